from typing import Any, Dict, Generic, Optional, Type, TypeVar
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.models.base import Base
from app.core.exceptions import NotFoundError, handle_database_errors

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)

class CRUDBase(Generic[ModelType, CreateSchemaType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    @handle_database_errors
    async def get(self, db: AsyncSession, id: Any, *, raise_if_not_found: bool = False) -> Optional[ModelType]:
        """Get a single record by ID"""
        result = await db.execute(select(self.model).where(self.model.id == id))
        obj = result.scalar_one_or_none()

        if raise_if_not_found and obj is None:
            raise NotFoundError(f"{self.model.__name__}")

        return obj

    @staticmethod
    def _dump(obj_in: CreateSchemaType) -> Dict[str, Any]:
        # Use model_dump() to preserve Python types (date, datetime, etc.)
        # instead of jsonable_encoder which converts them to strings
        if hasattr(obj_in, 'model_dump'):
            return obj_in.model_dump(exclude_unset=True)
        return jsonable_encoder(obj_in)
