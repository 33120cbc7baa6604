from typing import Generic, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from randomcall.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Common CRUD helpers shared by the model repositories."""

    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def create(self, session: AsyncSession, data: dict) -> ModelType:
        """Create a new row."""
        obj = self.model(**data)
        session.add(obj)
        await session.commit()
        await session.refresh(obj)
        return obj
