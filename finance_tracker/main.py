from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from functools import lru_cache
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from finance_tracker.balance_projection import BalanceProjector
from finance_tracker.clock import Clock, system_clock
from finance_tracker.config import (
    get_database_url,
    get_exchange_rate_url,
    get_frontend_origin,
    get_log_level,
    get_rate_cache_duration,
    get_storage_backend,
)
from finance_tracker.currency_conversion import (
    CurrencyService,
    FrankfurterRateProvider,
    RateProvider,
    UsdAmount,
    normalize_currency,
)
from finance_tracker.dashboard import DashboardService
from finance_tracker.logging_config import configure_logging
from finance_tracker.models import Account, Transaction
from finance_tracker.storage import InMemoryStorage, SqlStorage, Storage, StorageError
from finance_tracker.transaction_processing import CatchUpResult, TransactionProcessor

configure_logging(get_log_level())

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_frontend_origin()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass(frozen=True)
class Services:
    storage: Storage
    currency: CurrencyService
    processor: TransactionProcessor
    projector: BalanceProjector
    dashboard: DashboardService
    clock: Clock


def build_services(storage: Storage, provider: RateProvider, clock: Clock = system_clock) -> Services:
    currency = CurrencyService(provider, clock=clock, cache_duration=get_rate_cache_duration())
    processor = TransactionProcessor(storage, clock=clock)
    projector = BalanceProjector(currency, clock=clock)
    return Services(
        storage=storage,
        currency=currency,
        processor=processor,
        projector=projector,
        dashboard=DashboardService(storage, processor, projector, clock=clock),
        clock=clock,
    )


@lru_cache()
def get_services() -> Services:
    if get_storage_backend() == "memory":
        storage: Storage = InMemoryStorage()
    else:
        storage = SqlStorage.from_url(get_database_url())
    return build_services(storage, FrankfurterRateProvider(base_url=get_exchange_rate_url()))


@app.exception_handler(StorageError)
def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable."})


class AccountResponse(BaseModel):
    id: UUID
    name: str
    amount: Decimal
    currency: str
    last_processed_date: datetime | None = None
    created_at: datetime | None = None


class TransactionResponse(BaseModel):
    id: UUID
    account_id: UUID
    amount: Decimal
    currency: str
    transaction_date: date
    transaction_type: str
    source_id: UUID
    source_name: str
    description: str | None = None


class CatchUpResponse(BaseModel):
    account: AccountResponse
    created: list[TransactionResponse]
    balance_change: Decimal
    skipped: bool


class BalanceResponse(BaseModel):
    date: date
    amount_usd: Decimal
    is_approximate: bool
    formatted: str
    account_id: UUID | None = None


class MonthlyProjectionResponse(BaseModel):
    month: date
    balance_usd: Decimal
    is_approximate: bool


class UpcomingPaymentResponse(BaseModel):
    source_id: UUID
    name: str
    amount: Decimal
    currency: str
    transaction_type: str
    due_date: date
    label: str


class DashboardResponse(BaseModel):
    accounts: list[AccountResponse]
    total_balance_usd: Decimal
    monthly_subscriptions_usd: Decimal
    monthly_revenue_usd: Decimal
    net_monthly_change_usd: Decimal
    is_approximate: bool
    projections: list[MonthlyProjectionResponse]
    upcoming: list[UpcomingPaymentResponse]


class ConversionResponse(BaseModel):
    amount: Decimal
    currency: str
    amount_usd: Decimal
    is_approximate: bool
    formatted: str


def get_owner_id(x_user_id: str | None) -> UUID:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        return UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc


def get_account_or_404(services: Services, owner_id: UUID, account_id: UUID) -> Account:
    account = services.storage.get_account(owner_id, account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found.")
    return account


def account_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        name=account.name,
        amount=account.amount,
        currency=account.currency,
        last_processed_date=account.last_processed_date,
        created_at=account.created_at,
    )


def transaction_response(txn: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        account_id=txn.account_id,
        amount=txn.amount,
        currency=txn.currency,
        transaction_date=txn.transaction_date,
        transaction_type=txn.transaction_type,
        source_id=txn.source_id,
        source_name=txn.source_name,
        description=txn.description,
    )


def catch_up_response(result: CatchUpResult) -> CatchUpResponse:
    return CatchUpResponse(
        account=account_response(result.account),
        created=[transaction_response(txn) for txn in result.new_transactions],
        balance_change=result.total_change,
        skipped=result.skipped,
    )


def balance_response(
    services: Services, target: date, balance: UsdAmount, account_id: UUID | None = None
) -> BalanceResponse:
    return BalanceResponse(
        date=target,
        amount_usd=balance.amount,
        is_approximate=balance.is_approximate,
        formatted=services.currency.format_amount_in_usd(balance.amount),
        account_id=account_id,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    services: Services = Depends(get_services),
) -> list[AccountResponse]:
    owner_id = get_owner_id(x_user_id)
    return [account_response(account) for account in services.storage.list_accounts(owner_id)]


@app.get("/accounts/{account_id}/transactions", response_model=list[TransactionResponse])
def list_account_transactions(
    account_id: UUID,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    services: Services = Depends(get_services),
) -> list[TransactionResponse]:
    owner_id = get_owner_id(x_user_id)
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="Start date must be on or before end date.")
    get_account_or_404(services, owner_id, account_id)
    rows = services.processor.account_transactions(owner_id, account_id, start_date, end_date)
    return [transaction_response(txn) for txn in rows]


@app.post("/accounts/{account_id}/catch-up", response_model=CatchUpResponse)
def catch_up_account(
    account_id: UUID,
    x_user_id: str | None = Header(None, alias="x-user-id"),
    services: Services = Depends(get_services),
) -> CatchUpResponse:
    owner_id = get_owner_id(x_user_id)
    account = get_account_or_404(services, owner_id, account_id)
    result = services.processor.catch_up(
        account,
        services.storage.list_subscriptions(owner_id, account_id=account_id),
        services.storage.list_revenues(owner_id, account_id=account_id),
    )
    return catch_up_response(result)


@app.post("/catch-up", response_model=list[AccountResponse])
def catch_up_all_accounts(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    services: Services = Depends(get_services),
) -> list[AccountResponse]:
    owner_id = get_owner_id(x_user_id)
    updated = services.processor.catch_up_all(
        services.storage.list_accounts(owner_id),
        services.storage.list_subscriptions(owner_id),
        services.storage.list_revenues(owner_id),
    )
    return [account_response(account) for account in updated]


@app.get("/accounts/{account_id}/balance", response_model=BalanceResponse)
def account_balance(
    account_id: UUID,
    on: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    services: Services = Depends(get_services),
) -> BalanceResponse:
    owner_id = get_owner_id(x_user_id)
    account = get_account_or_404(services, owner_id, account_id)
    subscriptions = services.storage.list_subscriptions(owner_id, account_id=account_id)
    revenues = services.storage.list_revenues(owner_id, account_id=account_id)
    # Both routes start from the stored balance, so it has to be current first.
    account = services.processor.catch_up(account, subscriptions, revenues).account
    target = on or services.projector.today()
    later_transactions = services.storage.list_transactions(
        owner_id, account_id=account_id, start_date=target + timedelta(days=1)
    )
    balance = services.projector.balance_on(account, later_transactions, subscriptions, revenues, target)
    return balance_response(services, target, balance, account_id=account_id)


@app.get("/portfolio/balance", response_model=BalanceResponse)
def portfolio_balance(
    on: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
    services: Services = Depends(get_services),
) -> BalanceResponse:
    owner_id = get_owner_id(x_user_id)
    subscriptions = services.storage.list_subscriptions(owner_id)
    revenues = services.storage.list_revenues(owner_id)
    accounts = services.processor.catch_up_all(services.storage.list_accounts(owner_id), subscriptions, revenues)
    target = on or services.projector.today()
    balance = services.projector.portfolio_balance_on(
        accounts,
        services.storage.list_transactions(owner_id, start_date=target + timedelta(days=1)),
        subscriptions,
        revenues,
        target,
    )
    return balance_response(services, target, balance)


@app.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    services: Services = Depends(get_services),
) -> DashboardResponse:
    owner_id = get_owner_id(x_user_id)
    snapshot = services.dashboard.load(owner_id)
    return DashboardResponse(
        accounts=[account_response(account) for account in snapshot.accounts],
        total_balance_usd=snapshot.total_balance.amount,
        monthly_subscriptions_usd=snapshot.monthly_subscriptions.amount,
        monthly_revenue_usd=snapshot.monthly_revenue.amount,
        net_monthly_change_usd=snapshot.net_monthly_change.amount,
        is_approximate=snapshot.is_approximate,
        projections=[
            MonthlyProjectionResponse(
                month=projection.month,
                balance_usd=projection.balance.amount,
                is_approximate=projection.balance.is_approximate,
            )
            for projection in snapshot.projections
        ],
        upcoming=[
            UpcomingPaymentResponse(
                source_id=payment.source_id,
                name=payment.name,
                amount=payment.amount,
                currency=payment.currency,
                transaction_type=payment.transaction_type,
                due_date=payment.due_date,
                label=payment.label,
            )
            for payment in snapshot.upcoming
        ],
    )


@app.get("/convert", response_model=ConversionResponse)
def convert(
    amount: Decimal = Query(...),
    currency: str = Query(...),
    services: Services = Depends(get_services),
) -> ConversionResponse:
    try:
        normalized = normalize_currency(currency)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    converted = services.currency.to_usd_with_fallback(amount, normalized)
    return ConversionResponse(
        amount=amount,
        currency=normalized,
        amount_usd=converted.amount,
        is_approximate=converted.is_approximate,
        formatted=services.currency.format_amount_in_usd(converted.amount),
    )
