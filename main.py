import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from sqlalchemy.orm import Session

from ai_client import ReceiptScanner
from auth import get_current_user
from config import get_settings
from database import get_db
from errors import NotFoundError, RateLimitExceeded, ReceiptScanError, RequestBlocked
from models import TransactionType, User
from money import cents_to_decimal
from periods import resolve_period
from rate_limit import RateLimiter, enforce
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    AccountDetailOut,
    AccountIn,
    AccountOut,
    BudgetIn,
    BudgetOut,
    BudgetStatusOut,
    BulkDeleteIn,
    BulkDeleteOut,
    ReceiptData,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    BudgetService,
    SeedService,
    TransactionFilters,
    TransactionService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Welth")

rate_limiter = RateLimiter()
scheduler_manager = SchedulerManager()


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_receipt_scanner() -> ReceiptScanner:
    return ReceiptScanner()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    try:
        period = resolve_period(
            params.get("period"), params.get("start"), params.get("end"), today=local_today()
        )
        account_id = int(params["account_id"]) if params.get("account_id") else None
        txn_type = TransactionType(params["type"]) if params.get("type") else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    recurring = params.get("recurring")
    is_recurring = None
    if recurring in ("true", "1"):
        is_recurring = True
    elif recurring in ("false", "0"):
        is_recurring = False
    return TransactionFilters(
        account_id=account_id, type=txn_type, period=period, is_recurring=is_recurring
    )


# Accounts


@app.get("/api/accounts")
def list_accounts(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> list[AccountOut]:
    rows = AccountService(db, user.id).list_with_counts()
    return [AccountOut.from_model(account, count) for account, count in rows]


@app.post("/api/accounts", status_code=201)
def create_account(
    payload: AccountIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AccountOut:
    try:
        account = AccountService(db, user.id).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return AccountOut.from_model(account, 0)


@app.get("/api/accounts/{account_id}")
def get_account(
    account_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AccountDetailOut:
    try:
        account, transactions = AccountService(db, user.id).get_with_transactions(
            account_id
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    base = AccountOut.from_model(account, len(transactions))
    return AccountDetailOut(
        **base.model_dump(),
        transactions=[TransactionOut.from_model(txn) for txn in transactions],
    )


@app.post("/api/accounts/{account_id}/default")
def set_default_account(
    account_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AccountOut:
    try:
        account = AccountService(db, user.id).set_default(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return AccountOut.from_model(account)


@app.get("/api/accounts/{account_id}/balance")
def account_balance(
    account_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        balance_cents = AccountService(db, user.id).balance(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"account_id": account_id, "balance": cents_to_decimal(balance_cents)}


@app.post("/api/accounts/{account_id}/recalculate")
def recalculate_account(
    account_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AccountOut:
    try:
        account = AccountService(db, user.id).recalculate_balance(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return AccountOut.from_model(account)


@app.post("/api/accounts/{account_id}/seed")
def seed_account(
    account_id: int,
    days: int = 90,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        created = SeedService(db, user.id).seed_account(account_id, days=days)
        account = AccountService(db, user.id).get(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "created": created,
        "account": AccountOut.from_model(account, created),
    }


# Transactions


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    offset = (page - 1) * limit
    items = TransactionService(db, user.id).list(
        filters, limit=limit + 1, offset=offset
    )
    has_more = len(items) > limit
    items = items[:limit]
    return {
        "items": [TransactionOut.from_model(txn) for txn in items],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> TransactionOut:
    try:
        enforce(limiter.protect(user.external_id), user.external_id)
    except RateLimitExceeded as exc:
        raise HTTPException(status_code=429, detail=str(exc)) from exc
    except RequestBlocked as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    try:
        txn = TransactionService(db, user.id).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransactionOut.from_model(txn)


@app.post("/api/transactions/bulk-delete")
def bulk_delete_transactions(
    payload: BulkDeleteIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BulkDeleteOut:
    try:
        deleted = TransactionService(db, user.id).bulk_delete(payload.transaction_ids)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return BulkDeleteOut(deleted=deleted, message=f"Deleted {deleted} transactions")


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TransactionOut:
    try:
        txn = TransactionService(db, user.id).get(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransactionOut.from_model(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: TransactionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TransactionOut:
    try:
        txn = TransactionService(db, user.id).update(transaction_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransactionOut.from_model(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    try:
        TransactionService(db, user.id).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


# Receipts


@app.post("/api/receipts/scan")
async def scan_receipt(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    scanner: ReceiptScanner = Depends(get_receipt_scanner),
) -> ReceiptData:
    content = await file.read()
    try:
        return scanner.scan(content, file.content_type or "image/jpeg")
    except ReceiptScanError as exc:
        logger.error(f"receipt_scan: user_id={user.id} error={exc}")
        raise HTTPException(status_code=502, detail=str(exc)) from exc


# Budget


@app.get("/api/budget")
def get_budget(
    account_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BudgetStatusOut:
    status = BudgetService(db, user.id).get_current(account_id)
    return BudgetStatusOut(
        budget=BudgetOut.from_model(status.budget) if status.budget else None,
        current_expenses=cents_to_decimal(status.current_expenses_cents),
    )


@app.put("/api/budget")
def update_budget(
    payload: BudgetIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BudgetOut:
    try:
        budget = BudgetService(db, user.id).upsert(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return BudgetOut.from_model(budget)
