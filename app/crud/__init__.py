# CRUD operations package

from .subscription import subscription_crud

__all__ = [
    'subscription_crud'
]
