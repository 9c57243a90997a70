"""
Generic SQLAlchemy 2.0 repository.

Repositories take the caller's AsyncSession on every call and never commit;
the transaction boundary belongs to `DatabaseService.get_transaction()`.
Subclasses add the queries their table needs on top of these primitives.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete, func, select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement, Select
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    @property
    def model_name(self) -> str:
        return self.model_class.__name__

    def _trace(self, action: str, **fields: Any) -> None:
        self.log.debug(f"{self.model_name}.{action}", extra={"model": self.model_name, **fields})

    def _select(self, conditions: Sequence[ColumnElement[bool]]) -> Select[Any]:
        return select(self.model_class).where(*conditions)

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        """At most one row; `for_update` adds SELECT ... FOR UPDATE."""
        stmt = self._select(conditions)
        if for_update:
            stmt = stmt.with_for_update()
        instance = (await session.execute(stmt)).scalar_one_or_none()
        self._trace("find_one", found=instance is not None, locked=for_update)
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        stmt = self._select(conditions).order_by(*(order_by or ()))
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = list((await session.execute(stmt)).scalars())
        self._trace("find_many", rows=len(rows), limit=limit)
        return rows

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        total = int((await session.execute(stmt)).scalar_one())
        self._trace("count", rows=total)
        return total

    def add_many(self, session: AsyncSession, instances: Sequence[T]) -> List[T]:
        session.add_all(instances)
        self._trace("add_many", rows=len(instances))
        return list(instances)

    async def delete_where(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        """Bulk DELETE without syncing the identity map; returns the driver's rowcount."""
        stmt = delete(self.model_class).where(*conditions).execution_options(synchronize_session=False)
        deleted = int((await session.execute(stmt)).rowcount or 0)
        self._trace("delete", rows=deleted)
        return deleted

    async def flush(self, session: AsyncSession) -> None:
        await session.flush()
