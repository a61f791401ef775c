"""Table-level persistence backends.

Every backend speaks the same small table API over plain ``dict`` rows:
``select``, ``insert`` (returns the stored row, ``id`` assigned when
missing), ``update`` and ``delete``. ``budgetbook.persistence`` translates
those rows to and from domain objects.
"""

from __future__ import annotations

import copy
import json
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    delete,
    insert,
    select as sa_select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from budgetbook.config import Settings
from budgetbook.errors import ConfigurationError, PersistenceError, RowNotFoundError
from budgetbook.logging_setup import get_logger
from budgetbook.security import hash_password

logger = get_logger("budgetbook.backend")

TABLES = ("users", "accounts", "categories", "transactions", "budgets", "bills")

Row = dict[str, Any]


def new_id() -> str:
    return str(uuid.uuid4())


class Backend(ABC):
    @abstractmethod
    def select(
        self, table: str, *, order_by: tuple[str, ...] = (), descending: bool = False, **filters: Any
    ) -> list[Row]:
        ...

    @abstractmethod
    def insert(self, table: str, row: Row) -> Row:
        ...

    @abstractmethod
    def update(self, table: str, row_id: str, values: Row) -> None:
        ...

    @abstractmethod
    def delete(self, table: str, row_id: str) -> None:
        ...


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise PersistenceError(f"unknown table: {table}")


class InMemoryBackend(Backend):
    """Process-local tables; rows are copied in and out so callers never share state."""

    def __init__(self, id_factory: Callable[[], str] = new_id):
        self._tables: dict[str, dict[str, Row]] = {name: {} for name in TABLES}
        self._lock = threading.Lock()
        self._id_factory = id_factory

    def select(self, table, *, order_by=(), descending=False, **filters):
        _check_table(table)
        with self._lock:
            rows = [
                copy.deepcopy(r) for r in self._tables[table].values()
                if all(r.get(k) == v for k, v in filters.items())
            ]
        if order_by:
            rows.sort(key=lambda r: tuple(str(r.get(k) or "") for k in order_by), reverse=descending)
        return rows

    def insert(self, table, row):
        _check_table(table)
        stored = copy.deepcopy(row)
        stored.setdefault("id", self._id_factory())
        with self._lock:
            if stored["id"] in self._tables[table]:
                raise PersistenceError(f"duplicate id {stored['id']} in {table}")
            self._tables[table][stored["id"]] = stored
        return copy.deepcopy(stored)

    def update(self, table, row_id, values):
        _check_table(table)
        with self._lock:
            if row_id not in self._tables[table]:
                raise RowNotFoundError(table, row_id)
            self._tables[table][row_id].update(copy.deepcopy(values))

    def delete(self, table, row_id):
        _check_table(table)
        with self._lock:
            self._tables[table].pop(row_id, None)


metadata = MetaData()

users_table = Table(
    "users", metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String, nullable=False),
    Column("email", String, nullable=False, unique=True),
    Column("password_hash", String, nullable=False),
    Column("created_at", String, nullable=False),
)

accounts_table = Table(
    "accounts", metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("name", String, nullable=False),
    Column("type", String(16), nullable=False),
    Column("balance", Numeric(18, 2), nullable=False),
    Column("currency", String(3), nullable=False),
)

categories_table = Table(
    "categories", metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String, nullable=False),
    Column("type", String(16), nullable=False),
    Column("icon", String, nullable=False, default=""),
    Column("color", String, nullable=False, default=""),
)

transactions_table = Table(
    "transactions", metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("account_id", String(36), nullable=False),
    Column("category_id", String(36), nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("description", String, nullable=False, default=""),
    Column("date", String(10), nullable=False),
    Column("type", String(16), nullable=False),
    Column("created_at", String, nullable=False),
)

budgets_table = Table(
    "budgets", metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("category_id", String(36), nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("period", String(16), nullable=False),
    Column("start_date", String(10), nullable=False),
    Column("end_date", String(10), nullable=False),
)

bills_table = Table(
    "bills", metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("name", String, nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("due_date", Integer, nullable=False),
    Column("account_id", String(36), nullable=False),
    Column("category_id", String(36), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("last_paid_date", String(10), nullable=True),
)


class SqlBackend(Backend):
    """SQLAlchemy Core tables on any database URL; the schema is created on start."""

    def __init__(self, engine: Engine):
        self.engine = engine
        metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str) -> "SqlBackend":
        return cls(create_engine(url, pool_pre_ping=True))

    def _table(self, name: str) -> Table:
        _check_table(name)
        return metadata.tables[name]

    def select(self, table, *, order_by=(), descending=False, **filters):
        t = self._table(table)
        stmt = sa_select(t).where(*(t.c[k] == v for k, v in filters.items()))
        for k in order_by:
            stmt = stmt.order_by(t.c[k].desc() if descending else t.c[k])
        try:
            with self.engine.connect() as conn:
                return [dict(r._mapping) for r in conn.execute(stmt)]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"select from {table} failed: {exc}") from exc

    def insert(self, table, row):
        t = self._table(table)
        stored = {**row, "id": row.get("id") or new_id()}
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(t).values(**stored))
                created = conn.execute(sa_select(t).where(t.c.id == stored["id"])).one()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"insert into {table} failed: {exc}") from exc
        return dict(created._mapping)

    def update(self, table, row_id, values):
        t = self._table(table)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(update(t).where(t.c.id == row_id).values(**values))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"update of {table} failed: {exc}") from exc
        if result.rowcount == 0:
            raise RowNotFoundError(table, row_id)

    def delete(self, table, row_id):
        t = self._table(table)
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(t).where(t.c.id == row_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"delete from {table} failed: {exc}") from exc


def load_fixture_backend(seed_path: str) -> InMemoryBackend:
    """An InMemoryBackend filled with the rows of the development seed file.

    Seed users carry a plain ``password`` that is hashed on load.
    """

    with open(seed_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    backend = InMemoryBackend()
    for user in data.get("users", []):
        user = dict(user)
        user["password_hash"] = hash_password(user.pop("password"))
        backend.insert("users", user)
    for table in TABLES[1:]:
        for row in data.get(table, []):
            backend.insert(table, row)
    return backend


def build_backend(settings: Settings) -> Backend:
    if settings.database_url:
        logger.info("using SQL backend")
        return SqlBackend.from_url(settings.database_url)
    if settings.is_development:
        logger.warning(
            "no database configured; serving fixture data from %s", settings.seed_path
        )
        return load_fixture_backend(settings.seed_path)
    raise ConfigurationError(
        "No database is configured. Set BUDGETBOOK_DATABASE_URL "
        "(fixture data is only available with BUDGETBOOK_ENV=development)."
    )
