from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    func,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

app_settings = Table(
    "app_settings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), unique=True, nullable=False),
    Column("month_start_day", Integer, nullable=False, server_default="1"),
    Column("personal_budget", Numeric(14, 2), nullable=False, server_default="0"),
    Column("joint_budget", Numeric(14, 2), nullable=False, server_default="0"),
    Column("joint_budget_enabled", Boolean, nullable=False, server_default="0"),
    Column("default_asset_id", Integer, ForeignKey("assets.id")),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

assets = Table(
    "assets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(20), nullable=False),
    Column("initial_balance", Numeric(14, 2), nullable=False, server_default="0"),
    Column("settlement_day", Integer),
    Column("billing_day", Integer),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("name", String(255), nullable=False),
    Column("type", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "name", "type", name="uq_categories_user_name_type"),
)

fixed_items = Table(
    "fixed_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(20), nullable=False, server_default="fixed"),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("day", Integer, nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("asset_id", Integer, ForeignKey("assets.id")),
    Column("budget_type", String(20), nullable=False, server_default="personal"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("date", Date, nullable=False),
    Column("type", String(20), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("asset_id", Integer, ForeignKey("assets.id")),
    Column("to_asset_id", Integer, ForeignKey("assets.id")),
    Column("budget_type", String(20), nullable=False, server_default="personal"),
    Column("note", String(500)),
    Column("is_installment", Boolean, nullable=False, server_default="0"),
    Column("total_term", Integer),
    Column("current_term", Integer),
    Column("installment_day", Integer),
    Column("installment_id", Integer, ForeignKey("transactions.id")),
    Column("original_amount", Numeric(14, 2)),
    Column("include_in_living_expense", Boolean, nullable=False, server_default="1"),
    Column("fixed_item_id", Integer, ForeignKey("fixed_items.id")),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_transactions_user_date", "user_id", "date"),
    Index("ix_transactions_installment_date", "installment_id", "date"),
)

generation_markers = Table(
    "generation_markers",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("created_at", DateTime, nullable=False),
)
