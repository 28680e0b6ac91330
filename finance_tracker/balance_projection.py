from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Sequence, Union
from uuid import uuid4

from finance_tracker.clock import Clock, system_clock
from finance_tracker.currency_conversion import ZERO_USD, CurrencyService, UsdAmount
from finance_tracker.models import (
    TRANSACTION_TYPE_REVENUE,
    TRANSACTION_TYPE_SUBSCRIPTION,
    Account,
    Revenue,
    Subscription,
    Transaction,
    TransactionModel,
)
from finance_tracker.recurrence import (
    MONTHLY,
    ONCE,
    RECURRING_PERIODS,
    WEEKLY,
    YEARLY,
    add_months,
    month_end,
    month_start,
    normalize_period,
    occurrences_between,
    should_suppress_completed_one_time,
    start_of_day,
)

WEEKS_PER_MONTH = Decimal("4.33")
MONTHS_PER_YEAR = Decimal("12")
PROJECTION_MONTHS = 12

LedgerEntry = Union[Transaction, TransactionModel]
RecurringItem = Union[Subscription, Revenue]


@dataclass(frozen=True)
class MonthlyProjection:
    month: date
    balance: UsdAmount


def projected_transactions(
    subscriptions: Iterable[Subscription],
    revenues: Iterable[Revenue],
    as_of: date | datetime,
    end_date: date | datetime,
) -> List[TransactionModel]:
    """Synthetic occurrences from ``as_of``'s day through ``end_date``, oldest first."""
    as_of_day = start_of_day(as_of)
    end_day = start_of_day(end_date)
    projected: List[TransactionModel] = []

    for subscription in subscriptions:
        period = normalize_period(subscription.period)
        if period not in RECURRING_PERIODS:
            continue
        for occurrence in occurrences_between(subscription.repetition_date, period, as_of_day, end_day):
            projected.append(
                TransactionModel(
                    id=uuid4(),
                    account_id=subscription.account_id,
                    amount=-subscription.amount,
                    currency=subscription.currency,
                    transaction_date=occurrence,
                    transaction_type=TRANSACTION_TYPE_SUBSCRIPTION,
                    source_id=subscription.id,
                    source_name=subscription.name,
                )
            )

    for revenue in revenues:
        period = normalize_period(revenue.period)
        anchor = revenue.repetition_date
        if period == ONCE:
            if anchor is None:
                anchor = as_of_day
            elif should_suppress_completed_one_time(anchor, as_of_day):
                continue
        for occurrence in occurrences_between(anchor, period, as_of_day, end_day):
            projected.append(
                TransactionModel(
                    id=uuid4(),
                    account_id=revenue.account_id,
                    amount=revenue.amount,
                    currency=revenue.currency,
                    transaction_date=occurrence,
                    transaction_type=TRANSACTION_TYPE_REVENUE,
                    source_id=revenue.id,
                    source_name=revenue.name,
                )
            )

    projected.sort(key=lambda txn: txn.transaction_date)
    return projected


class BalanceProjector:
    """Answers "what is the balance on day D" in USD.

    Days up to today are reconstructed backwards from the stored balance
    using real transactions. Later days replay projected transactions
    forward from the stored balance, starting tomorrow, because today's
    occurrences are already folded into the stored balance by catch-up.
    """

    def __init__(self, currency_service: CurrencyService, clock: Clock = system_clock) -> None:
        self._currency = currency_service
        self._clock = clock

    def today(self) -> date:
        return start_of_day(self._clock())

    def balance_at(
        self,
        account: Account,
        transactions: Iterable[LedgerEntry],
        target_date: date | datetime,
    ) -> UsdAmount:
        target_day = start_of_day(target_date)
        balance = self._to_usd(account.amount, account.currency)
        for txn in transactions:
            if txn.account_id == account.id and start_of_day(txn.transaction_date) <= target_day:
                balance += self._to_usd(txn.amount, txn.currency)
        return balance

    def historical_balance_at(
        self,
        account: Account,
        transactions: Iterable[Transaction],
        target_date: date | datetime,
    ) -> UsdAmount:
        target_day = start_of_day(target_date)
        balance = self._to_usd(account.amount, account.currency)
        for txn in transactions:
            if txn.account_id == account.id and start_of_day(txn.transaction_date) > target_day:
                balance -= self._to_usd(txn.amount, txn.currency)
        return balance

    def portfolio_balance_at(
        self,
        accounts: Iterable[Account],
        transactions: Sequence[LedgerEntry],
        target_date: date | datetime,
    ) -> UsdAmount:
        total = ZERO_USD
        for account in accounts:
            total += self.balance_at(account, transactions, target_date)
        return total

    def balance_on(
        self,
        account: Account,
        real_transactions: Sequence[Transaction],
        subscriptions: Sequence[Subscription],
        revenues: Sequence[Revenue],
        target_date: date | datetime,
    ) -> UsdAmount:
        target_day = start_of_day(target_date)
        today = self.today()
        if target_day <= today:
            return self.historical_balance_at(account, real_transactions, target_day)
        projected = projected_transactions(subscriptions, revenues, today + timedelta(days=1), target_day)
        return self.balance_at(account, projected, target_day)

    def portfolio_balance_on(
        self,
        accounts: Iterable[Account],
        real_transactions: Sequence[Transaction],
        subscriptions: Sequence[Subscription],
        revenues: Sequence[Revenue],
        target_date: date | datetime,
    ) -> UsdAmount:
        target_day = start_of_day(target_date)
        today = self.today()
        if target_day <= today:
            total = ZERO_USD
            for account in accounts:
                total += self.historical_balance_at(account, real_transactions, target_day)
            return total
        projected = projected_transactions(subscriptions, revenues, today + timedelta(days=1), target_day)
        return self.portfolio_balance_at(accounts, projected, target_day)

    def current_total_balance(self, accounts: Iterable[Account]) -> UsdAmount:
        total = ZERO_USD
        for account in accounts:
            total += self._to_usd(account.amount, account.currency)
        return total

    def monthly_recurring_total(self, items: Iterable[RecurringItem]) -> UsdAmount:
        """Monthly-equivalent USD total; one-time items do not count."""
        total = ZERO_USD
        for item in items:
            period = normalize_period(item.period)
            if period not in RECURRING_PERIODS:
                continue
            usd = self._to_usd(item.amount, item.currency)
            if period == WEEKLY:
                total += UsdAmount(usd.amount * WEEKS_PER_MONTH, usd.is_approximate)
            elif period == MONTHLY:
                total += usd
            elif period == YEARLY:
                total += UsdAmount(usd.amount / MONTHS_PER_YEAR, usd.is_approximate)
        return total

    def monthly_subscriptions(self, subscriptions: Iterable[Subscription]) -> UsdAmount:
        return self.monthly_recurring_total(subscriptions)

    def monthly_revenue(self, revenues: Iterable[Revenue]) -> UsdAmount:
        return self.monthly_recurring_total(revenues)

    def net_monthly_change(
        self,
        subscriptions: Iterable[Subscription],
        revenues: Iterable[Revenue],
    ) -> UsdAmount:
        return self.monthly_revenue(revenues) - self.monthly_subscriptions(subscriptions)

    def twelve_month_projection(
        self,
        accounts: Sequence[Account],
        subscriptions: Sequence[Subscription],
        revenues: Sequence[Revenue],
    ) -> List[MonthlyProjection]:
        today = self.today()
        first_month = month_start(today)
        horizon_end = month_end(add_months(first_month, PROJECTION_MONTHS - 1))
        projected = projected_transactions(subscriptions, revenues, today + timedelta(days=1), horizon_end)

        projections: List[MonthlyProjection] = []
        for offset in range(PROJECTION_MONTHS):
            month = add_months(first_month, offset)
            balance = self.portfolio_balance_at(accounts, projected, month_end(month))
            projections.append(MonthlyProjection(month=month, balance=balance))
        return projections

    def _to_usd(self, amount: Decimal, currency: str) -> UsdAmount:
        return self._currency.to_usd_with_fallback(amount, currency)
