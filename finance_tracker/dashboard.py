from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
import logging
from typing import Iterable, List, Optional, Protocol
from uuid import UUID

from finance_tracker.balance_projection import BalanceProjector, MonthlyProjection
from finance_tracker.clock import Clock, system_clock
from finance_tracker.currency_conversion import UsdAmount
from finance_tracker.models import (
    TRANSACTION_TYPE_REVENUE,
    TRANSACTION_TYPE_SUBSCRIPTION,
    Account,
    Revenue,
    Subscription,
)
from finance_tracker.recurrence import (
    ONCE,
    format_relative_label,
    next_occurrence,
    normalize_period,
    should_suppress_completed_one_time,
    start_of_day,
)
from finance_tracker.storage import Storage
from finance_tracker.transaction_processing import TransactionProcessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpcomingPayment:
    source_id: UUID
    name: str
    amount: Decimal
    currency: str
    transaction_type: str
    due_date: date
    label: str


@dataclass(frozen=True)
class DashboardSnapshot:
    accounts: List[Account]
    total_balance: UsdAmount
    monthly_subscriptions: UsdAmount
    monthly_revenue: UsdAmount
    net_monthly_change: UsdAmount
    projections: List[MonthlyProjection]
    upcoming: List[UpcomingPayment] = field(default_factory=list)

    @property
    def is_approximate(self) -> bool:
        return any(
            figure.is_approximate
            for figure in (
                self.total_balance,
                self.monthly_subscriptions,
                self.monthly_revenue,
                *(projection.balance for projection in self.projections),
            )
        )


def upcoming_payments(
    subscriptions: Iterable[Subscription],
    revenues: Iterable[Revenue],
    reference_date: date,
) -> List[UpcomingPayment]:
    upcoming: List[UpcomingPayment] = []
    for item, transaction_type, sign in [
        *((subscription, TRANSACTION_TYPE_SUBSCRIPTION, -1) for subscription in subscriptions),
        *((revenue, TRANSACTION_TYPE_REVENUE, 1) for revenue in revenues),
    ]:
        if item.repetition_date is None:
            continue
        if normalize_period(item.period) == ONCE and should_suppress_completed_one_time(
            item.repetition_date, reference_date
        ):
            continue
        due = next_occurrence(item.repetition_date, item.period, reference_date)
        if due is None:
            continue
        upcoming.append(
            UpcomingPayment(
                source_id=item.id,
                name=item.name,
                amount=item.amount * sign,
                currency=item.currency,
                transaction_type=transaction_type,
                due_date=due,
                label=format_relative_label(due, reference_date),
            )
        )
    upcoming.sort(key=lambda payment: (payment.due_date, payment.name))
    return upcoming


class DashboardService:
    def __init__(
        self,
        storage: Storage,
        processor: TransactionProcessor,
        projector: BalanceProjector,
        clock: Clock = system_clock,
    ) -> None:
        self._storage = storage
        self._processor = processor
        self._projector = projector
        self._clock = clock

    def load(self, owner_id: UUID) -> DashboardSnapshot:
        accounts = self._storage.list_accounts(owner_id)
        subscriptions = self._storage.list_subscriptions(owner_id)
        revenues = self._storage.list_revenues(owner_id)

        accounts = self._processor.catch_up_all(accounts, subscriptions, revenues)
        return DashboardSnapshot(
            accounts=accounts,
            total_balance=self._projector.current_total_balance(accounts),
            monthly_subscriptions=self._projector.monthly_subscriptions(subscriptions),
            monthly_revenue=self._projector.monthly_revenue(revenues),
            net_monthly_change=self._projector.net_monthly_change(subscriptions, revenues),
            projections=self._projector.twelve_month_projection(accounts, subscriptions, revenues),
            upcoming=upcoming_payments(subscriptions, revenues, start_of_day(self._clock())),
        )


class DashboardSource(Protocol):
    def load(self, owner_id: UUID) -> DashboardSnapshot: ...


class DashboardLoader:
    """Keeps at most one dashboard load in flight.

    Starting a load cancels the previous one. A superseded load resolves to
    None and leaves ``snapshot`` and ``error`` untouched; the work it had
    already handed to storage is allowed to finish.
    """

    def __init__(self, source: DashboardSource) -> None:
        self._source = source
        self._current: Optional[asyncio.Task] = None
        self.snapshot: Optional[DashboardSnapshot] = None
        self.error: Optional[Exception] = None

    @property
    def is_loading(self) -> bool:
        return self._current is not None and not self._current.done()

    async def load(self, owner_id: UUID) -> Optional[DashboardSnapshot]:
        if self.is_loading:
            self._current.cancel()
        task = asyncio.ensure_future(asyncio.to_thread(self._source.load, owner_id))
        self._current = task
        try:
            snapshot = await task
        except asyncio.CancelledError:
            if task is not self._current:
                logger.debug("Dashboard load for %s superseded", owner_id)
                return None
            raise
        except Exception as exc:
            if task is not self._current:
                return None
            self.error = exc
            raise
        if task is not self._current:
            return None
        self.snapshot = snapshot
        self.error = None
        return snapshot
