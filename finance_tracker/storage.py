"""Storage collaborator used by the engines.

One interface, two interchangeable backings: ``SqlStorage`` for the hosted
database and ``InMemoryStorage`` for local-only sessions. The engines never
branch on which one they were given.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, replace
from datetime import date, datetime
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    Uuid,
    create_engine,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from finance_tracker.models import Account, Revenue, Subscription, Transaction


class StorageError(RuntimeError):
    """Raised when the backing store cannot complete a read or write."""


class Storage(ABC):
    @abstractmethod
    def list_accounts(self, owner_id: UUID) -> list[Account]:
        ...

    @abstractmethod
    def list_subscriptions(self, owner_id: UUID, account_id: UUID | None = None) -> list[Subscription]:
        ...

    @abstractmethod
    def list_revenues(self, owner_id: UUID, account_id: UUID | None = None) -> list[Revenue]:
        ...

    @abstractmethod
    def list_transactions(
        self,
        owner_id: UUID,
        account_id: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Transaction]:
        """Transactions ordered by date; both date bounds are inclusive."""

    @abstractmethod
    def create_account(self, account: Account) -> Account:
        ...

    @abstractmethod
    def create_subscription(self, subscription: Subscription) -> Subscription:
        ...

    @abstractmethod
    def create_revenue(self, revenue: Revenue) -> Revenue:
        ...

    @abstractmethod
    def create_transaction(self, transaction: Transaction) -> Transaction:
        ...

    @abstractmethod
    def update_account(self, account: Account) -> Account:
        """Replace the stored account. Raises StorageError if it does not exist."""

    @abstractmethod
    def advance_watermark(self, account_id: UUID, moment: datetime) -> None:
        """Move only ``last_processed_date`` forward to ``moment``; never backwards.

        The stored balance is left as it is. Raises StorageError if the
        account does not exist.
        """

    def get_account(self, owner_id: UUID, account_id: UUID) -> Account | None:
        for account in self.list_accounts(owner_id):
            if account.id == account_id:
                return account
        return None


class InMemoryStorage(Storage):
    def __init__(self) -> None:
        self._accounts: dict[UUID, Account] = {}
        self._subscriptions: dict[UUID, Subscription] = {}
        self._revenues: dict[UUID, Revenue] = {}
        self._transactions: dict[UUID, Transaction] = {}

    def list_accounts(self, owner_id: UUID) -> list[Account]:
        return [account for account in self._accounts.values() if account.owner_id == owner_id]

    def list_subscriptions(self, owner_id: UUID, account_id: UUID | None = None) -> list[Subscription]:
        return [
            item
            for item in self._subscriptions.values()
            if item.owner_id == owner_id and (account_id is None or item.account_id == account_id)
        ]

    def list_revenues(self, owner_id: UUID, account_id: UUID | None = None) -> list[Revenue]:
        return [
            item
            for item in self._revenues.values()
            if item.owner_id == owner_id and (account_id is None or item.account_id == account_id)
        ]

    def list_transactions(
        self,
        owner_id: UUID,
        account_id: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Transaction]:
        matches = [
            txn
            for txn in self._transactions.values()
            if txn.owner_id == owner_id
            and (account_id is None or txn.account_id == account_id)
            and (start_date is None or txn.transaction_date >= start_date)
            and (end_date is None or txn.transaction_date <= end_date)
        ]
        return sorted(matches, key=lambda txn: txn.transaction_date)

    def create_account(self, account: Account) -> Account:
        self._accounts[account.id] = account
        return account

    def create_subscription(self, subscription: Subscription) -> Subscription:
        self._subscriptions[subscription.id] = subscription
        return subscription

    def create_revenue(self, revenue: Revenue) -> Revenue:
        self._revenues[revenue.id] = revenue
        return revenue

    def create_transaction(self, transaction: Transaction) -> Transaction:
        for existing in self._transactions.values():
            if (
                existing.account_id == transaction.account_id
                and existing.source_id == transaction.source_id
                and existing.transaction_date == transaction.transaction_date
            ):
                raise StorageError("Transaction already recorded for this source and date.")
        self._transactions[transaction.id] = transaction
        return transaction

    def update_account(self, account: Account) -> Account:
        if account.id not in self._accounts:
            raise StorageError("Account not found.")
        self._accounts[account.id] = account
        return account

    def advance_watermark(self, account_id: UUID, moment: datetime) -> None:
        stored = self._accounts.get(account_id)
        if stored is None:
            raise StorageError("Account not found.")
        if stored.last_processed_date is None or stored.last_processed_date < moment:
            self._accounts[account_id] = replace(stored, last_processed_date=moment)


metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("owner_id", Uuid, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("last_processed_date", DateTime),
    Column("created_at", DateTime),
)

subscriptions = Table(
    "subscriptions",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("owner_id", Uuid, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("period", String(20), nullable=False),
    Column("repetition_date", Date),
    Column("account_id", Uuid, ForeignKey("accounts.id")),
    Column("created_at", DateTime),
)

revenues = Table(
    "revenues",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("owner_id", Uuid, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("period", String(20), nullable=False),
    Column("repetition_date", Date),
    Column("account_id", Uuid, ForeignKey("accounts.id")),
    Column("created_at", DateTime),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("owner_id", Uuid, nullable=False, index=True),
    Column("account_id", Uuid, ForeignKey("accounts.id"), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("transaction_date", Date, nullable=False),
    Column("transaction_type", String(20), nullable=False),
    Column("source_id", Uuid, nullable=False),
    Column("source_name", String(255), nullable=False),
    Column("description", String(500)),
    Column("created_at", DateTime),
    UniqueConstraint(
        "account_id",
        "source_id",
        "transaction_date",
        name="uq_transactions_account_source_date",
    ),
)


class SqlStorage(Storage):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> SqlStorage:
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        storage = cls(create_engine(database_url, connect_args=connect_args))
        storage.init_schema()
        return storage

    def init_schema(self) -> None:
        try:
            metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to initialise schema.") from exc

    def list_accounts(self, owner_id: UUID) -> list[Account]:
        stmt = select(accounts).where(accounts.c.owner_id == owner_id).order_by(accounts.c.created_at.asc())
        return [Account(**row) for row in self._fetch(stmt)]

    def list_subscriptions(self, owner_id: UUID, account_id: UUID | None = None) -> list[Subscription]:
        stmt = select(subscriptions).where(subscriptions.c.owner_id == owner_id)
        if account_id is not None:
            stmt = stmt.where(subscriptions.c.account_id == account_id)
        stmt = stmt.order_by(subscriptions.c.created_at.asc())
        return [Subscription(**row) for row in self._fetch(stmt)]

    def list_revenues(self, owner_id: UUID, account_id: UUID | None = None) -> list[Revenue]:
        stmt = select(revenues).where(revenues.c.owner_id == owner_id)
        if account_id is not None:
            stmt = stmt.where(revenues.c.account_id == account_id)
        stmt = stmt.order_by(revenues.c.created_at.asc())
        return [Revenue(**row) for row in self._fetch(stmt)]

    def list_transactions(
        self,
        owner_id: UUID,
        account_id: UUID | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Transaction]:
        stmt = select(transactions).where(transactions.c.owner_id == owner_id)
        if account_id is not None:
            stmt = stmt.where(transactions.c.account_id == account_id)
        if start_date is not None:
            stmt = stmt.where(transactions.c.transaction_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(transactions.c.transaction_date <= end_date)
        stmt = stmt.order_by(transactions.c.transaction_date.asc())
        return [Transaction(**row) for row in self._fetch(stmt)]

    def create_account(self, account: Account) -> Account:
        self._execute(insert(accounts).values(**asdict(account)))
        return account

    def create_subscription(self, subscription: Subscription) -> Subscription:
        self._execute(insert(subscriptions).values(**asdict(subscription)))
        return subscription

    def create_revenue(self, revenue: Revenue) -> Revenue:
        self._execute(insert(revenues).values(**asdict(revenue)))
        return revenue

    def create_transaction(self, transaction: Transaction) -> Transaction:
        self._execute(insert(transactions).values(**asdict(transaction)))
        return transaction

    def update_account(self, account: Account) -> Account:
        stmt = (
            update(accounts)
            .where(accounts.c.id == account.id)
            .values(
                name=account.name,
                amount=account.amount,
                currency=account.currency,
                last_processed_date=account.last_processed_date,
            )
        )
        if self._execute(stmt) == 0:
            raise StorageError("Account not found.")
        return account

    def advance_watermark(self, account_id: UUID, moment: datetime) -> None:
        stmt = (
            update(accounts)
            .where(accounts.c.id == account_id)
            .where(or_(accounts.c.last_processed_date.is_(None), accounts.c.last_processed_date < moment))
            .values(last_processed_date=moment)
        )
        try:
            with self._engine.begin() as conn:
                if conn.execute(select(accounts.c.id).where(accounts.c.id == account_id)).first() is None:
                    raise StorageError("Account not found.")
                conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError("Failed to write to storage.") from exc

    def _fetch(self, stmt) -> list[Mapping[str, Any]]:
        try:
            with self._engine.begin() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings().all()]
        except SQLAlchemyError as exc:
            raise StorageError("Failed to read from storage.") from exc

    def _execute(self, stmt) -> int:
        try:
            with self._engine.begin() as conn:
                return conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise StorageError("Failed to write to storage.") from exc
