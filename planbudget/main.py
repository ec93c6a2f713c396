import logging
import os
from datetime import date, datetime
from decimal import Decimal

import bcrypt
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine, insert, select, update
from sqlalchemy.exc import IntegrityError

from planbudget.billing_cycle import billing_amounts
from planbudget.budget_aggregator import (
    expense_by_category,
    living_budget,
    monthly_installment_burden,
    summarize_budget,
)
from planbudget.errors import ConflictError, NotFoundError, TransientStoreError
from planbudget.generation_engine import GenerationEngine, GenerationResult
from planbudget.idempotency_gate import IdempotencyGate
from planbudget.models import (
    Asset,
    AssetType,
    BudgetType,
    BudgetTypeFilter,
    CategoryType,
    FixedItemType,
    InstallmentMaster,
    Transaction,
    TransactionType,
)
from planbudget.occurrence_scheduler import installment_occurrences_between
from planbudget.period_calculator import (
    PeriodAnchor,
    current_period_anchor,
    current_window,
    validate_month_start_day,
    window_for,
)
from planbudget.schema import (
    app_settings,
    assets,
    categories,
    fixed_items,
    metadata,
    transactions,
    users,
)
from planbudget.sql_ledger import SqlLedger, SqlMarkerStore, row_to_fixed_item

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:8081")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./planbudget.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
ledger = SqlLedger(engine)
gate = IdempotencyGate(SqlMarkerStore(engine))


def get_system_month_start_day() -> int:
    raw = os.getenv("DEFAULT_MONTH_START_DAY", "1")
    try:
        return validate_month_start_day(int(raw))
    except ValueError:
        return 1


SYSTEM_MONTH_START_DAY = get_system_month_start_day()

DEFAULT_CATEGORIES = [
    ("Salary", CategoryType.INCOME),
    ("Other income", CategoryType.INCOME),
    ("Food", CategoryType.EXPENSE),
    ("Transport", CategoryType.EXPENSE),
    ("Shopping", CategoryType.EXPENSE),
    ("Housing", CategoryType.FIXED),
    ("Telecom", CategoryType.FIXED),
    ("Insurance", CategoryType.FIXED),
]


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class SettingsPayload(BaseModel):
    month_start_day: int | None = None
    personal_budget: Decimal | None = None
    joint_budget: Decimal | None = None
    joint_budget_enabled: bool | None = None
    default_asset_id: int | None = None

    @classmethod
    def validate_payload(cls, payload: "SettingsPayload") -> "SettingsPayload":
        if payload.month_start_day is not None:
            validate_month_start_day(payload.month_start_day)
        for budget in (payload.personal_budget, payload.joint_budget):
            if budget is not None and budget < 0:
                raise ValueError("Budget must not be negative.")
        return payload


class SettingsResponse(BaseModel):
    user_id: int
    month_start_day: int
    personal_budget: Decimal
    joint_budget: Decimal
    joint_budget_enabled: bool
    default_asset_id: int | None = None


class CategoryPayload(BaseModel):
    name: str
    type: str

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.name = payload.name.strip()
        payload.type = CategoryType.validate(payload.type)
        if not payload.name:
            raise ValueError("Category name required.")
        return payload


class CategoryResponse(BaseModel):
    id: int
    user_id: int | None = None
    name: str
    type: str


class AssetPayload(BaseModel):
    name: str
    type: str
    initial_balance: Decimal = Decimal("0")
    settlement_day: int | None = None
    billing_day: int | None = None

    @classmethod
    def validate_payload(cls, payload: "AssetPayload") -> "AssetPayload":
        payload.name = payload.name.strip()
        payload.type = AssetType.validate(payload.type)
        if not payload.name:
            raise ValueError("Asset name required.")
        for value in (payload.settlement_day, payload.billing_day):
            if value is not None and not 1 <= value <= 31:
                raise ValueError("Card days must be between 1 and 31.")
        if payload.type != AssetType.CARD:
            payload.settlement_day = None
            payload.billing_day = None
        return payload


class AssetResponse(AssetPayload):
    id: int
    user_id: int


class BillingResponse(BaseModel):
    asset_id: int
    current_billing: Decimal
    next_billing: Decimal
    billing_start: date
    billing_end: date
    unbilled_start: date | None = None
    unbilled_end: date | None = None


class FixedItemPayload(BaseModel):
    name: str
    type: str = FixedItemType.FIXED
    amount: Decimal
    day: int
    category_id: int | None = None
    asset_id: int | None = None
    budget_type: str = BudgetType.PERSONAL
    is_active: bool = True

    @classmethod
    def validate_payload(cls, payload: "FixedItemPayload") -> "FixedItemPayload":
        payload.name = payload.name.strip()
        payload.type = FixedItemType.validate(payload.type)
        payload.budget_type = BudgetType.validate(payload.budget_type)
        if not payload.name:
            raise ValueError("Fixed item name required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        if not 1 <= payload.day <= 31:
            raise ValueError("Day must be between 1 and 31.")
        return payload


class FixedItemResponse(FixedItemPayload):
    id: int
    user_id: int


class TransactionPayload(BaseModel):
    title: str
    amount: Decimal
    date: date
    type: str
    category_id: int | None = None
    asset_id: int | None = None
    to_asset_id: int | None = None
    budget_type: str = BudgetType.PERSONAL
    note: str | None = None
    is_installment: bool = False
    total_term: int | None = None
    current_term: int | None = None
    installment_day: int | None = None
    include_in_living_expense: bool = True

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.title = payload.title.strip()
        payload.type = TransactionType.validate(payload.type)
        payload.budget_type = BudgetType.validate(payload.budget_type)
        payload.note = payload.note.strip() if payload.note else None
        if not payload.title:
            raise ValueError("Title required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        if payload.type == TransactionType.TRANSFER:
            if payload.asset_id is None or payload.to_asset_id is None:
                raise ValueError("Transfers require source and destination assets.")
            if payload.asset_id == payload.to_asset_id:
                raise ValueError("Transfer assets must differ.")
        else:
            payload.to_asset_id = None
        if not payload.is_installment:
            payload.total_term = None
            payload.current_term = None
            payload.installment_day = None
            return payload
        if payload.type != TransactionType.EXPENSE:
            raise ValueError("Only expenses can be paid in installments.")
        if payload.total_term is None or payload.total_term < 1:
            raise ValueError("Installment total term must be at least 1.")
        payload.current_term = payload.current_term or 1
        if not 1 <= payload.current_term <= payload.total_term:
            raise ValueError("Installment current term is out of range.")
        payload.installment_day = payload.installment_day or payload.date.day
        if not 1 <= payload.installment_day <= 31:
            raise ValueError("Installment day must be between 1 and 31.")
        return payload


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    title: str
    amount: Decimal
    date: date
    type: str
    kind: str
    category_id: int | None = None
    asset_id: int | None = None
    to_asset_id: int | None = None
    budget_type: str
    note: str | None = None
    is_installment: bool
    total_term: int | None = None
    current_term: int | None = None
    installment_day: int | None = None
    installment_id: int | None = None
    original_amount: Decimal | None = None
    include_in_living_expense: bool
    fixed_item_id: int | None = None


class PeriodResponse(BaseModel):
    year: int
    month: int
    month_start_day: int
    period_key: str
    start_date: date
    end_date: date


class GenerationResponse(BaseModel):
    period_key: str | None = None
    fixed_generated: int
    fixed_skipped: int
    fixed_failed: int
    fixed_short_circuited: bool
    installment_generated: int
    installment_skipped: int
    installment_failed: int
    installment_short_circuited: bool


class BudgetSummaryResponse(BaseModel):
    start_date: date
    end_date: date
    budget_type: str
    total_income: Decimal
    total_expense: Decimal
    fixed_expense: Decimal
    living_expense: Decimal
    personal_expense: Decimal
    joint_expense: Decimal
    living_budget: Decimal
    remaining: Decimal
    usage_rate: Decimal
    category_expenses: dict[str, Decimal]


class InstallmentScheduleEntry(BaseModel):
    master_id: int
    title: str
    date: date
    amount: Decimal
    term: int
    total_term: int


class InstallmentScheduleResponse(BaseModel):
    start_date: date
    end_date: date
    monthly_burden: Decimal
    entries: list[InstallmentScheduleEntry]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def ensure_settings(conn, user_id: int) -> dict:
    row = conn.execute(
        select(app_settings).where(app_settings.c.user_id == user_id)
    ).mappings().first()
    if row:
        return dict(row)
    conn.execute(
        insert(app_settings).values(user_id=user_id, month_start_day=SYSTEM_MONTH_START_DAY)
    )
    return dict(
        conn.execute(select(app_settings).where(app_settings.c.user_id == user_id))
        .mappings()
        .one()
    )


def ensure_default_categories(conn, user_id: int) -> None:
    existing = conn.execute(
        select(categories.c.id).where(categories.c.user_id == user_id).limit(1)
    ).first()
    if existing:
        return
    conn.execute(
        insert(categories),
        [{"user_id": user_id, "name": name, "type": kind} for name, kind in DEFAULT_CATEGORIES],
    )


def load_month_start_day(user_id: int) -> int:
    with engine.begin() as conn:
        return ensure_settings(conn, user_id)["month_start_day"]


def require_owned(conn, table, record_id: int | None, user_id: int, label: str) -> None:
    if record_id is None:
        return
    found = conn.execute(
        select(table.c.id).where(table.c.id == record_id, table.c.user_id == user_id)
    ).first()
    if not found:
        raise NotFoundError(f"{label} not found.")


def category_types_for(conn, user_id: int) -> dict[int, str]:
    rows = conn.execute(
        select(categories.c.id, categories.c.type).where(
            (categories.c.user_id == user_id) | categories.c.user_id.is_(None)
        )
    ).all()
    return {row[0]: row[1] for row in rows}


def build_engine(as_of: date | None) -> GenerationEngine:
    if as_of is None:
        return GenerationEngine(ledger=ledger, gate=gate, fixed_item_source=ledger)
    return GenerationEngine(
        ledger=ledger, gate=gate, fixed_item_source=ledger, today=lambda: as_of
    )


def settings_response(row: dict) -> SettingsResponse:
    return SettingsResponse(
        user_id=row["user_id"],
        month_start_day=row["month_start_day"],
        personal_budget=row["personal_budget"],
        joint_budget=row["joint_budget"],
        joint_budget_enabled=row["joint_budget_enabled"],
        default_asset_id=row["default_asset_id"],
    )


def asset_from_row(row) -> Asset:
    return Asset(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=row["type"],
        initial_balance=row["initial_balance"],
        settlement_day=row["settlement_day"],
        billing_day=row["billing_day"],
    )


def asset_response(row) -> AssetResponse:
    return AssetResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=row["type"],
        initial_balance=row["initial_balance"],
        settlement_day=row["settlement_day"],
        billing_day=row["billing_day"],
    )


def fixed_item_response(row) -> FixedItemResponse:
    return FixedItemResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=row["type"],
        amount=row["amount"],
        day=row["day"],
        category_id=row["category_id"],
        asset_id=row["asset_id"],
        budget_type=row["budget_type"],
        is_active=row["is_active"],
    )


def transaction_response(txn: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        user_id=txn.user_id,
        title=txn.title,
        amount=txn.amount,
        date=txn.date,
        type=txn.type,
        kind=txn.kind,
        category_id=txn.category_id,
        asset_id=txn.asset_id,
        to_asset_id=txn.to_asset_id,
        budget_type=txn.budget_type,
        note=txn.note,
        is_installment=txn.is_installment,
        total_term=txn.total_term,
        current_term=txn.current_term,
        installment_day=txn.installment_day,
        installment_id=txn.installment_id,
        original_amount=txn.original_amount,
        include_in_living_expense=txn.include_in_living_expense,
        fixed_item_id=txn.fixed_item_id,
    )


def resolve_window(year: int | None, month: int | None, month_start_day: int):
    if year is None or month is None:
        return current_window(date.today(), month_start_day)
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12.")
    return window_for(year, month, month_start_day)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
            if row:
                ensure_default_categories(conn, row["id"])
                ensure_settings(conn, row["id"])
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/users/me/settings", response_model=SettingsResponse)
def get_settings(x_user_id: str | None = Header(None, alias="x-user-id")) -> SettingsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = ensure_settings(conn, user_id)
    return settings_response(row)


@app.put("/users/me/settings", response_model=SettingsResponse)
def update_settings(
    payload: SettingsPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> SettingsResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = SettingsPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    values = payload.model_dump(exclude_none=True)
    with engine.begin() as conn:
        ensure_settings(conn, user_id)
        try:
            require_owned(conn, assets, payload.default_asset_id, user_id, "Asset")
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        if values:
            conn.execute(
                update(app_settings)
                .where(app_settings.c.user_id == user_id)
                .values(**values, updated_at=datetime.now())
            )
        row = ensure_settings(conn, user_id)
    return settings_response(row)


@app.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        ensure_default_categories(conn, user_id)
        rows = conn.execute(
            select(categories)
            .where((categories.c.user_id == user_id) | categories.c.user_id.is_(None))
            .order_by(categories.c.type.asc(), categories.c.name.asc())
        ).mappings().all()
    return [
        CategoryResponse(id=row["id"], user_id=row["user_id"], name=row["name"], type=row["type"])
        for row in rows
    ]


@app.post("/categories", response_model=CategoryResponse)
def create_category(
    payload: CategoryPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> CategoryResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = CategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(categories)
        .values(user_id=user_id, name=payload.name, type=payload.type)
        .returning(categories.c.id, categories.c.user_id, categories.c.name, categories.c.type)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Category already exists.") from exc
    return CategoryResponse(id=row["id"], user_id=row["user_id"], name=row["name"], type=row["type"])


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        in_use = conn.execute(
            select(transactions.c.id).where(transactions.c.category_id == category_id).limit(1)
        ).first() or conn.execute(
            select(fixed_items.c.id).where(fixed_items.c.category_id == category_id).limit(1)
        ).first()
        if in_use:
            raise HTTPException(status_code=409, detail="Category is in use.")
        result = conn.execute(
            categories.delete().where(
                categories.c.id == category_id, categories.c.user_id == user_id
            )
        )
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Category not found.")
    return {"status": "deleted"}


@app.get("/assets", response_model=list[AssetResponse])
def list_assets(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[AssetResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(assets).where(assets.c.user_id == user_id).order_by(assets.c.id.asc())
        ).mappings().all()
    return [asset_response(row) for row in rows]


@app.post("/assets", response_model=AssetResponse)
def create_asset(
    payload: AssetPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> AssetResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = AssetPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        row = conn.execute(
            insert(assets)
            .values(user_id=user_id, **payload.model_dump())
            .returning(*assets.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=500, detail="Failed to create asset.")
    return asset_response(row)


@app.put("/assets/{asset_id}", response_model=AssetResponse)
def update_asset(
    asset_id: int,
    payload: AssetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> AssetResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = AssetPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        row = conn.execute(
            update(assets)
            .where(assets.c.id == asset_id, assets.c.user_id == user_id)
            .values(**payload.model_dump())
            .returning(*assets.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Asset not found.")
    return asset_response(row)


@app.delete("/assets/{asset_id}")
def delete_asset(asset_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        references = (
            select(transactions.c.id).where(
                (transactions.c.asset_id == asset_id) | (transactions.c.to_asset_id == asset_id)
            ),
            select(fixed_items.c.id).where(fixed_items.c.asset_id == asset_id),
            select(app_settings.c.id).where(app_settings.c.default_asset_id == asset_id),
        )
        if any(conn.execute(query.limit(1)).first() for query in references):
            raise HTTPException(status_code=409, detail="Asset is in use.")
        result = conn.execute(
            assets.delete().where(assets.c.id == asset_id, assets.c.user_id == user_id)
        )
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Asset not found.")
    return {"status": "deleted"}


@app.get("/assets/{asset_id}/billing", response_model=BillingResponse)
def asset_billing(
    asset_id: int,
    as_of: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BillingResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            select(assets).where(assets.c.id == asset_id, assets.c.user_id == user_id)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Asset not found.")
    try:
        amounts = billing_amounts(ledger, asset_from_row(row), as_of or date.today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return BillingResponse(
        asset_id=asset_id,
        current_billing=amounts.current_billing,
        next_billing=amounts.next_billing,
        billing_start=amounts.billing_period.start_date,
        billing_end=amounts.billing_period.end_date,
        unbilled_start=amounts.unbilled_period.start_date if amounts.unbilled_period else None,
        unbilled_end=amounts.unbilled_period.end_date if amounts.unbilled_period else None,
    )


@app.get("/fixed-items", response_model=list[FixedItemResponse])
def list_fixed_items(
    include_inactive: bool = Query(False),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[FixedItemResponse]:
    user_id = get_user_id(x_user_id)
    conditions = [fixed_items.c.user_id == user_id]
    if not include_inactive:
        conditions.append(fixed_items.c.is_active.is_(True))
    with engine.begin() as conn:
        rows = conn.execute(
            select(fixed_items).where(*conditions).order_by(fixed_items.c.day.asc())
        ).mappings().all()
    return [fixed_item_response(row) for row in rows]


@app.post("/fixed-items", response_model=FixedItemResponse)
def create_fixed_item(
    payload: FixedItemPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> FixedItemResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = FixedItemPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        try:
            require_owned(conn, categories, payload.category_id, user_id, "Category")
            require_owned(conn, assets, payload.asset_id, user_id, "Asset")
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        row = conn.execute(
            insert(fixed_items)
            .values(user_id=user_id, **payload.model_dump())
            .returning(*fixed_items.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=500, detail="Failed to create fixed item.")
    if row["is_active"]:
        build_engine(None).generate_for_template(
            row_to_fixed_item(row), load_month_start_day(user_id)
        )
    return fixed_item_response(row)


@app.put("/fixed-items/{item_id}", response_model=FixedItemResponse)
def update_fixed_item(
    item_id: int,
    payload: FixedItemPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> FixedItemResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = FixedItemPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        try:
            require_owned(conn, categories, payload.category_id, user_id, "Category")
            require_owned(conn, assets, payload.asset_id, user_id, "Asset")
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        row = conn.execute(
            update(fixed_items)
            .where(fixed_items.c.id == item_id, fixed_items.c.user_id == user_id)
            .values(**payload.model_dump())
            .returning(*fixed_items.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Fixed item not found.")
    return fixed_item_response(row)


@app.delete("/fixed-items/{item_id}")
def delete_fixed_item(item_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        owned = conn.execute(
            select(fixed_items.c.id).where(
                fixed_items.c.id == item_id, fixed_items.c.user_id == user_id
            )
        ).first()
        if not owned:
            raise HTTPException(status_code=404, detail="Fixed item not found.")
        conn.execute(
            update(transactions)
            .where(transactions.c.fixed_item_id == item_id)
            .values(fixed_item_id=None)
        )
        conn.execute(fixed_items.delete().where(fixed_items.c.id == item_id))
    return {"status": "deleted"}


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    year: int | None = Query(None),
    month: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TransactionResponse]:
    user_id = get_user_id(x_user_id)
    try:
        window = resolve_window(year, month, load_month_start_day(user_id))
        found = ledger.query_transactions(user_id, window.start_date, window.end_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    found.sort(key=lambda txn: (txn.date, txn.id), reverse=True)
    return [transaction_response(txn) for txn in found]


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        try:
            require_owned(conn, categories, payload.category_id, user_id, "Category")
            require_owned(conn, assets, payload.asset_id, user_id, "Asset")
            require_owned(conn, assets, payload.to_asset_id, user_id, "Destination asset")
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    try:
        created = ledger.insert_transaction(
            Transaction(
                user_id=user_id,
                original_amount=payload.amount if payload.is_installment else None,
                **payload.model_dump(),
            )
        )
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if created.is_master:
        build_engine(None).generate_for_template(
            InstallmentMaster.from_transaction(created), load_month_start_day(user_id)
        )
    return transaction_response(created)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    try:
        existing = ledger.get_transaction(user_id, transaction_id)
        if existing is None:
            raise HTTPException(status_code=404, detail="Transaction not found.")
        removed_occurrences = 0
        if existing.is_master:
            removed_occurrences = ledger.delete_master(existing.id)
        else:
            ledger.delete_transaction(existing.id)
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"status": "deleted", "removed_occurrences": removed_occurrences}


@app.get("/periods/current", response_model=PeriodResponse)
def current_period(
    as_of: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PeriodResponse:
    user_id = get_user_id(x_user_id)
    month_start_day = load_month_start_day(user_id)
    anchor = current_period_anchor(as_of or date.today(), month_start_day)
    window = window_for(anchor.year, anchor.month, month_start_day)
    return PeriodResponse(
        year=anchor.year,
        month=anchor.month,
        month_start_day=month_start_day,
        period_key=anchor.key(month_start_day),
        start_date=window.start_date,
        end_date=window.end_date,
    )


@app.get("/periods/window", response_model=PeriodResponse)
def period_window(
    year: int = Query(...),
    month: int = Query(..., ge=1, le=12),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PeriodResponse:
    user_id = get_user_id(x_user_id)
    month_start_day = load_month_start_day(user_id)
    window = window_for(year, month, month_start_day)
    return PeriodResponse(
        year=year,
        month=month,
        month_start_day=month_start_day,
        period_key=PeriodAnchor(year, month).key(month_start_day),
        start_date=window.start_date,
        end_date=window.end_date,
    )


@app.post("/generation/run", response_model=GenerationResponse)
def run_generation(
    as_of: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> GenerationResponse:
    user_id = get_user_id(x_user_id)
    month_start_day = load_month_start_day(user_id)
    try:
        results = build_engine(as_of).generate_all(user_id, month_start_day)
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    fixed: GenerationResult = results["fixed"]
    installment: GenerationResult = results["installment"]
    return GenerationResponse(
        period_key=fixed.period_key,
        fixed_generated=fixed.generated,
        fixed_skipped=fixed.skipped,
        fixed_failed=fixed.failed,
        fixed_short_circuited=fixed.short_circuited,
        installment_generated=installment.generated,
        installment_skipped=installment.skipped,
        installment_failed=installment.failed,
        installment_short_circuited=installment.short_circuited,
    )


@app.get("/budget/summary", response_model=BudgetSummaryResponse)
def budget_summary(
    year: int | None = Query(None),
    month: int | None = Query(None),
    budget_type: str = Query(BudgetTypeFilter.ALL),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetSummaryResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        settings = ensure_settings(conn, user_id)
        category_types = category_types_for(conn, user_id)
    try:
        window = resolve_window(year, month, settings["month_start_day"])
        found = ledger.query_transactions(user_id, window.start_date, window.end_date)
        active_items = ledger.list_active_fixed_items(user_id)
        budget = living_budget(
            settings["personal_budget"],
            settings["joint_budget"] if settings["joint_budget_enabled"] else Decimal("0"),
            active_items,
            budget_type,
        )
        summary = summarize_budget(found, budget, budget_type, category_types)
        by_category = expense_by_category(found, category_types)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return BudgetSummaryResponse(
        start_date=window.start_date,
        end_date=window.end_date,
        budget_type=budget_type,
        total_income=summary.total_income,
        total_expense=summary.total_expense,
        fixed_expense=summary.fixed_expense,
        living_expense=summary.living_expense,
        personal_expense=summary.personal_expense,
        joint_expense=summary.joint_expense,
        living_budget=summary.budget,
        remaining=summary.remaining,
        usage_rate=summary.usage_rate,
        category_expenses={
            str(entry.category_id) if entry.category_id is not None else "uncategorized": entry.amount
            for entry in by_category
        },
    )


@app.get("/installments/schedule", response_model=InstallmentScheduleResponse)
def installment_schedule(
    year: int | None = Query(None),
    month: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> InstallmentScheduleResponse:
    user_id = get_user_id(x_user_id)
    month_start_day = load_month_start_day(user_id)
    try:
        window = resolve_window(year, month, month_start_day)
        records = ledger.list_installment_masters(user_id)
        entries: list[InstallmentScheduleEntry] = []
        for record in records:
            master = InstallmentMaster.from_transaction(record)
            entries.extend(
                InstallmentScheduleEntry(
                    master_id=master.id,
                    title=master.title,
                    date=occurrence.date,
                    amount=occurrence.amount,
                    term=occurrence.term,
                    total_term=master.total_term,
                )
                for occurrence in installment_occurrences_between(
                    master, window.start_date, window.end_date, month_start_day
                )
            )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    entries.sort(key=lambda entry: (entry.date, entry.master_id))
    return InstallmentScheduleResponse(
        start_date=window.start_date,
        end_date=window.end_date,
        monthly_burden=monthly_installment_burden(records),
        entries=entries,
    )
