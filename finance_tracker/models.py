from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

TRANSACTION_TYPE_REVENUE = "revenue"
TRANSACTION_TYPE_SUBSCRIPTION = "subscription"
TRANSACTION_TYPES = {TRANSACTION_TYPE_REVENUE, TRANSACTION_TYPE_SUBSCRIPTION}


@dataclass(frozen=True)
class Account:
    id: UUID
    owner_id: UUID
    name: str
    amount: Decimal
    currency: str
    last_processed_date: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class Subscription:
    id: UUID
    owner_id: UUID
    name: str
    amount: Decimal
    currency: str
    period: str
    repetition_date: date | None
    account_id: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class Revenue:
    id: UUID
    owner_id: UUID
    name: str
    amount: Decimal
    currency: str
    period: str
    repetition_date: date | None = None
    account_id: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class Transaction:
    """A materialized occurrence. Amount is signed: debits are negative."""

    id: UUID
    owner_id: UUID
    account_id: UUID
    amount: Decimal
    currency: str
    transaction_date: date
    transaction_type: str
    source_id: UUID
    source_name: str
    description: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TransactionModel:
    """A projected occurrence that only exists for forward balance replay."""

    id: UUID
    account_id: UUID | None
    amount: Decimal
    currency: str
    transaction_date: date
    transaction_type: str
    source_id: UUID
    source_name: str
