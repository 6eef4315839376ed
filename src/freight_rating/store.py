"""Thin document-store facade over a SQLAlchemy session.

Only equality filters, a single ordering field and a limit are supported.
Callers that need more (effective-date windows, OR-of-nulls scopes) fetch a
superset and post-filter in memory.
"""
from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Protocol, Type, TypeVar

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import InternalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["DocumentStore", "SqlDocumentStore"]


class DocumentStore(Protocol):
    def get(self, model: Type[T], ident: Any) -> Optional[T]: ...

    def query(
        self,
        model: Type[T],
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[T]: ...

    def first(
        self,
        model: Type[T],
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Optional[T]: ...


class SqlDocumentStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, model: Type[T], ident: Any) -> Optional[T]:
        try:
            return self.session.get(model, ident)
        except SQLAlchemyError as exc:
            logger.exception("Store get failed for %s id=%s", model.__name__, ident)
            raise InternalError(f"document store failure reading {model.__tablename__}") from exc

    def query(
        self,
        model: Type[T],
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[T]:
        stmt = select(model)
        for field, value in (filters or {}).items():
            column = getattr(model, field)
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        if order_by:
            column = getattr(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        # Stable secondary order: insertion order of the primary key
        for pk in inspect(model).primary_key:
            stmt = stmt.order_by(pk.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            logger.exception("Store query failed for %s filters=%s", model.__name__, dict(filters or {}))
            raise InternalError(f"document store failure querying {model.__tablename__}") from exc

    def first(
        self,
        model: Type[T],
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Optional[T]:
        rows = self.query(model, filters, order_by=order_by, descending=descending, limit=1)
        return rows[0] if rows else None
