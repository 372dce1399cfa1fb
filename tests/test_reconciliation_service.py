"""Tests for app/services/reconciliation_service.py

Covers:
- checkout.session.completed: Stripe lookup, wallet resolution, atomic insert
- customer.subscription.deleted: cancel, redelivery, unknown subscription
- Abort paths (missing wallet, Stripe failure, database timeout) leave no rows
- Period end policy
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    BillingProviderError,
    MalformedEventError,
    MissingWalletError,
    PersistenceError,
)
from app.crud.subscription import subscription_crud
from app.models import Subscription, SubscriptionStatus, SubscriptionWallet
from app.schemas.subscription import StripeEvent
from app.services.reconciliation_service import (
    CHECKOUT_COMPLETED,
    DEFAULT_BILLING_PERIOD,
    SUBSCRIPTION_DELETED,
    ReconciliationOutcome,
    ReconciliationService,
    resolve_period_end,
)
from tests.conftest import FIXED_NOW, make_session, make_stripe_subscription


def _event(event_type: str, obj: dict) -> StripeEvent:
    return StripeEvent.model_validate({"id": "evt_1", "type": event_type, "data": {"object": obj}})


async def _counts(session_factory) -> tuple[int, int]:
    async with session_factory() as db:
        subs = (await db.execute(select(func.count()).select_from(Subscription))).scalar_one()
        links = (await db.execute(select(func.count()).select_from(SubscriptionWallet))).scalar_one()
    return subs, links


class TestCheckoutCompleted:
    @pytest.mark.asyncio
    async def test_example_scenario(self, reconciliation, session_factory, mock_stripe) -> None:
        """cs_1/sub_1 with wallet 0xABC in subscription metadata."""
        period_end = int((FIXED_NOW + timedelta(days=30)).timestamp())
        mock_stripe.retrieve_subscription.return_value = make_stripe_subscription(period_end=period_end)

        result = await reconciliation.handle_event(_event(CHECKOUT_COMPLETED, make_session()))

        mock_stripe.retrieve_subscription.assert_awaited_once_with("sub_1")
        assert result.outcome == ReconciliationOutcome.CREATED
        assert result.wallet_address == "0xABC"

        async with session_factory() as db:
            stored = await subscription_crud.get(db, result.subscription_id)
            wallets = await subscription_crud.get_wallets(db, result.subscription_id)

        assert stored.customer_email == "a@b.com"
        assert stored.status == "active"
        assert stored.stripe_customer_id == "cus_1"
        assert stored.stripe_session_id == "cs_1"
        assert stored.current_period_end.replace(tzinfo=timezone.utc) == datetime.fromtimestamp(
            period_end, tz=timezone.utc
        )
        assert [(w.wallet_address, w.is_primary) for w in wallets] == [("0xABC", True)]
        assert await _counts(session_factory) == (1, 1)

    @pytest.mark.asyncio
    async def test_subscription_wallet_preferred_over_session(self, reconciliation, session_factory) -> None:
        session = make_session(metadata={"wallet_address": "0xSESSION"})

        result = await reconciliation.handle_checkout_completed(session)

        assert result.wallet_address == "0xABC"

    @pytest.mark.asyncio
    async def test_session_wallet_used_when_subscription_has_none(
        self, reconciliation, mock_stripe
    ) -> None:
        mock_stripe.retrieve_subscription.return_value = make_stripe_subscription(wallet=None)
        session = make_session(metadata={"wallet_address": "0xSESSION"})

        result = await reconciliation.handle_checkout_completed(session)

        assert result.wallet_address == "0xSESSION"

    @pytest.mark.asyncio
    async def test_missing_wallet_aborts_without_rows(self, reconciliation, session_factory, mock_stripe) -> None:
        mock_stripe.retrieve_subscription.return_value = make_stripe_subscription(wallet=None)

        with pytest.raises(MissingWalletError) as exc_info:
            await reconciliation.handle_event(_event(CHECKOUT_COMPLETED, make_session()))

        assert exc_info.value.subscription_id == "sub_1"
        assert await _counts(session_factory) == (0, 0)

    @pytest.mark.asyncio
    async def test_stripe_failure_aborts_without_rows(self, reconciliation, session_factory, mock_stripe) -> None:
        mock_stripe.retrieve_subscription.side_effect = BillingProviderError("Stripe subscription lookup timed out")

        with pytest.raises(BillingProviderError):
            await reconciliation.handle_event(_event(CHECKOUT_COMPLETED, make_session()))

        assert await _counts(session_factory) == (0, 0)

    @pytest.mark.asyncio
    async def test_redelivery_does_not_duplicate(self, reconciliation, session_factory) -> None:
        event = _event(CHECKOUT_COMPLETED, make_session())

        first = await reconciliation.handle_event(event)
        second = await reconciliation.handle_event(event)

        assert first.outcome == ReconciliationOutcome.CREATED
        assert second.outcome == ReconciliationOutcome.DUPLICATE
        assert second.subscription_id == first.subscription_id
        assert await _counts(session_factory) == (1, 1)

    @pytest.mark.asyncio
    async def test_email_falls_back_to_customer_email(self, reconciliation, session_factory) -> None:
        session = make_session(customer_details=None, customer_email="fallback@b.com")

        result = await reconciliation.handle_checkout_completed(session)

        async with session_factory() as db:
            stored = await subscription_crud.get(db, result.subscription_id)
        assert stored.customer_email == "fallback@b.com"

    @pytest.mark.asyncio
    async def test_session_without_subscription_is_malformed(self, reconciliation, mock_stripe) -> None:
        with pytest.raises(MalformedEventError):
            await reconciliation.handle_checkout_completed(make_session(subscription_id=None))

        mock_stripe.retrieve_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_timeout_is_persistence_error(self, session_factory, mock_stripe) -> None:
        async def _slow(*args, **kwargs):
            await asyncio.sleep(1)

        store = MagicMock()
        store.get_or_create_with_wallet = AsyncMock(side_effect=_slow)
        service = ReconciliationService(
            session_factory, mock_stripe, store=store, database_timeout=0.05, clock=lambda: FIXED_NOW
        )

        with pytest.raises(PersistenceError):
            await service.handle_checkout_completed(make_session())


class TestSubscriptionCancelled:
    @pytest.mark.asyncio
    async def test_cancels_existing_subscription(self, reconciliation, session_factory) -> None:
        await reconciliation.handle_event(_event(CHECKOUT_COMPLETED, make_session()))

        result = await reconciliation.handle_event(_event(SUBSCRIPTION_DELETED, {"id": "sub_1"}))

        assert result.outcome == ReconciliationOutcome.CANCELLED
        async with session_factory() as db:
            stored = await subscription_crud.get_latest_by_stripe_subscription_id(db, "sub_1")
        assert stored.status == SubscriptionStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_redelivered_cancellation_stays_cancelled(self, reconciliation, session_factory) -> None:
        await reconciliation.handle_event(_event(CHECKOUT_COMPLETED, make_session()))
        event = _event(SUBSCRIPTION_DELETED, {"id": "sub_1"})

        await reconciliation.handle_event(event)
        await reconciliation.handle_event(event)

        async with session_factory() as db:
            stored = await subscription_crud.get_latest_by_stripe_subscription_id(db, "sub_1")
        assert stored.status == SubscriptionStatus.CANCELLED.value
        assert await _counts(session_factory) == (1, 1)

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_success(self, reconciliation, session_factory, mock_stripe) -> None:
        result = await reconciliation.handle_event(_event(SUBSCRIPTION_DELETED, {"id": "sub_unknown"}))

        assert result.outcome == ReconciliationOutcome.NOT_FOUND
        assert await _counts(session_factory) == (0, 0)
        mock_stripe.retrieve_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_before_complete_then_complete(self, reconciliation, session_factory) -> None:
        """Out-of-order delivery: the early cancellation is a no-op."""
        early = await reconciliation.handle_event(_event(SUBSCRIPTION_DELETED, {"id": "sub_1"}))
        created = await reconciliation.handle_event(_event(CHECKOUT_COMPLETED, make_session()))

        assert early.outcome == ReconciliationOutcome.NOT_FOUND
        assert created.outcome == ReconciliationOutcome.CREATED


class TestIgnoredEvents:
    @pytest.mark.asyncio
    async def test_unrecognised_type_is_ignored(self, reconciliation, session_factory, mock_stripe) -> None:
        result = await reconciliation.handle_event(_event("invoice.paid", {"id": "in_1"}))

        assert result.outcome == ReconciliationOutcome.IGNORED
        assert result.event_type == "invoice.paid"
        assert await _counts(session_factory) == (0, 0)


class TestResolvePeriodEnd:
    def test_uses_subscription_period_end(self) -> None:
        ts = int(datetime(2031, 5, 1, tzinfo=timezone.utc).timestamp())

        assert resolve_period_end({"current_period_end": ts}, FIXED_NOW) == datetime(2031, 5, 1, tzinfo=timezone.utc)

    def test_uses_first_item_period_end(self) -> None:
        ts = int(datetime(2031, 6, 1, tzinfo=timezone.utc).timestamp())
        subscription = {"items": {"data": [{"current_period_end": ts}]}}

        assert resolve_period_end(subscription, FIXED_NOW) == datetime(2031, 6, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "soon", True, 0, float("nan")])
    def test_invalid_values_fall_back_to_default_period(self, value) -> None:
        assert resolve_period_end({"current_period_end": value}, FIXED_NOW) == FIXED_NOW + DEFAULT_BILLING_PERIOD

    def test_default_period_is_thirty_days(self) -> None:
        assert DEFAULT_BILLING_PERIOD == timedelta(days=30)
