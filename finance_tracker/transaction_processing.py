from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Iterable, List, Set, Tuple
from uuid import UUID, uuid4

from finance_tracker.clock import Clock, system_clock
from finance_tracker.models import (
    TRANSACTION_TYPE_REVENUE,
    TRANSACTION_TYPE_SUBSCRIPTION,
    Account,
    Revenue,
    Subscription,
    Transaction,
)
from finance_tracker.recurrence import (
    ONCE,
    RECURRING_PERIODS,
    normalize_period,
    occurrences_between,
    start_of_day,
)
from finance_tracker.storage import Storage, StorageError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

DedupKey = Tuple[UUID, date]


@dataclass(frozen=True)
class CatchUpResult:
    account: Account
    new_transactions: List[Transaction] = field(default_factory=list)
    skipped: bool = False

    @property
    def total_change(self) -> Decimal:
        return sum((txn.amount for txn in self.new_transactions), ZERO)


def is_behind(account: Account, now: datetime) -> bool:
    """An account is behind until its watermark reaches today."""
    watermark = account.last_processed_date or account.created_at
    if watermark is None:
        return False
    return start_of_day(watermark) < start_of_day(now)


def processing_window(account: Account, now: datetime) -> Tuple[date, date]:
    """Inclusive day range still to be materialized, ending today."""
    start = account.last_processed_date or account.created_at or now
    return start_of_day(start), start_of_day(now)


def dedup_key(transaction: Transaction) -> DedupKey:
    return transaction.source_id, start_of_day(transaction.transaction_date)


def plan_catch_up(
    account: Account,
    subscriptions: Iterable[Subscription],
    revenues: Iterable[Revenue],
    existing_transactions: Iterable[Transaction],
    now: datetime,
) -> CatchUpResult:
    """Work out the transactions and account update for one catch-up pass.

    Occurrences already present in ``existing_transactions`` are skipped,
    which is what makes repeated passes over the same window harmless.
    Amounts are summed in their own currency; linked items are assumed to
    share the account's currency.
    """
    window_start, window_end = processing_window(account, now)
    recorded: Set[DedupKey] = {
        dedup_key(txn) for txn in existing_transactions if txn.account_id == account.id
    }

    new_transactions: List[Transaction] = []
    for subscription in subscriptions:
        if subscription.account_id != account.id:
            continue
        period = normalize_period(subscription.period)
        if period not in RECURRING_PERIODS or subscription.repetition_date is None:
            logger.warning(
                "Skipping subscription %s with period %r and anchor %s",
                subscription.id,
                subscription.period,
                subscription.repetition_date,
            )
            continue
        for occurrence in occurrences_between(subscription.repetition_date, period, window_start, window_end):
            if (subscription.id, occurrence) in recorded:
                continue
            recorded.add((subscription.id, occurrence))
            new_transactions.append(
                _materialize(
                    account,
                    source_id=subscription.id,
                    source_name=subscription.name,
                    amount=-subscription.amount,
                    currency=subscription.currency,
                    occurrence=occurrence,
                    transaction_type=TRANSACTION_TYPE_SUBSCRIPTION,
                    description=f"Subscription: {subscription.name}",
                    now=now,
                )
            )

    for revenue in revenues:
        if revenue.account_id != account.id:
            continue
        period = normalize_period(revenue.period)
        if period is None or revenue.repetition_date is None:
            if period != ONCE:
                logger.warning(
                    "Skipping revenue %s with period %r and anchor %s",
                    revenue.id,
                    revenue.period,
                    revenue.repetition_date,
                )
            continue
        description = f"Revenue (one-time): {revenue.name}" if period == ONCE else f"Revenue: {revenue.name}"
        for occurrence in occurrences_between(revenue.repetition_date, period, window_start, window_end):
            if (revenue.id, occurrence) in recorded:
                continue
            recorded.add((revenue.id, occurrence))
            new_transactions.append(
                _materialize(
                    account,
                    source_id=revenue.id,
                    source_name=revenue.name,
                    amount=revenue.amount,
                    currency=revenue.currency,
                    occurrence=occurrence,
                    transaction_type=TRANSACTION_TYPE_REVENUE,
                    description=description,
                    now=now,
                )
            )

    watermark = _advance_watermark(account.last_processed_date, now)
    if not new_transactions:
        return CatchUpResult(account=replace(account, last_processed_date=watermark))

    total_change = sum((txn.amount for txn in new_transactions), ZERO)
    updated = replace(
        account,
        amount=account.amount + total_change,
        last_processed_date=watermark,
    )
    return CatchUpResult(account=updated, new_transactions=new_transactions)


class TransactionProcessor:
    """Materializes recurring items into stored transactions, one account at a time."""

    def __init__(self, storage: Storage, clock: Clock = system_clock) -> None:
        self._storage = storage
        self._clock = clock

    def catch_up(
        self,
        account: Account,
        subscriptions: Iterable[Subscription],
        revenues: Iterable[Revenue],
    ) -> CatchUpResult:
        now = self._clock()
        # Plan from the stored copy; the caller's may predate another pass.
        account = self._storage.get_account(account.owner_id, account.id) or account
        if not is_behind(account, now):
            return CatchUpResult(account=account, skipped=True)

        window_start, window_end = processing_window(account, now)
        # The dedup set has to be built from storage before anything is emitted.
        existing = self._storage.list_transactions(
            account.owner_id,
            account_id=account.id,
            start_date=window_start,
            end_date=window_end,
        )
        result = plan_catch_up(account, subscriptions, revenues, existing, now)

        if result.new_transactions:
            for transaction in result.new_transactions:
                self._storage.create_transaction(transaction)
            self._storage.update_account(result.account)
            logger.info(
                "Processed %d transactions for account '%s'. Balance change: %s",
                len(result.new_transactions),
                account.name,
                result.total_change,
            )
        else:
            self._storage.advance_watermark(account.id, result.account.last_processed_date)
            logger.debug("No pending transactions for account '%s'", account.name)
        return result

    def catch_up_all(
        self,
        accounts: Iterable[Account],
        subscriptions: Iterable[Subscription],
        revenues: Iterable[Revenue],
    ) -> List[Account]:
        """Catch up every account; a storage failure only holds back its own account."""
        subscriptions = list(subscriptions)
        revenues = list(revenues)
        updated: List[Account] = []
        for account in accounts:
            try:
                result = self.catch_up(account, subscriptions, revenues)
            except StorageError:
                logger.exception(
                    "Catch-up failed for account '%s'; it will be retried on the next pass",
                    account.name,
                )
                updated.append(account)
                continue
            updated.append(result.account)
        return updated

    def account_transactions(
        self,
        owner_id: UUID,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> List[Transaction]:
        return self._storage.list_transactions(
            owner_id,
            account_id=account_id,
            start_date=start_date,
            end_date=end_date,
        )


def _materialize(
    account: Account,
    *,
    source_id: UUID,
    source_name: str,
    amount: Decimal,
    currency: str,
    occurrence: date,
    transaction_type: str,
    description: str,
    now: datetime,
) -> Transaction:
    return Transaction(
        id=uuid4(),
        owner_id=account.owner_id,
        account_id=account.id,
        amount=amount,
        currency=currency,
        transaction_date=occurrence,
        transaction_type=transaction_type,
        source_id=source_id,
        source_name=source_name,
        description=description,
        created_at=now,
    )


def _advance_watermark(current: datetime | None, now: datetime) -> datetime:
    if current is not None and current > now:
        return current
    return now
