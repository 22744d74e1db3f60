# --- remote store engine + table models ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import JSON, String, Text, Integer, Numeric, DateTime, func, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import datetime
from typing import Any, Dict, Optional, Type
import logging, time, uuid

from settings import load_settings

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------

def to_async_url(url: str) -> str:
    """Rewrite a plain postgres URL for asyncpg; asyncpg takes `ssl`, not `sslmode`."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    for mode in ("require", "verify-full", "verify-ca"):
        url = url.replace(f"?sslmode={mode}&", "?").replace(f"?sslmode={mode}", "").replace(f"&sslmode={mode}", "")
    return url


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    url = to_async_url(url)
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    connect_args = {
        "server_settings": {"application_name": "ledger_sync"},
        "command_timeout": 60,  # seconds
        "timeout": 30,  # connect timeout, seconds
    }
    if "sslmode=" in load_settings().database_url:
        connect_args["ssl"] = "require"
    return create_async_engine(
        url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_timeout=20,
        connect_args=connect_args,
    )


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


def _redact_db_url(url: str) -> str:
    if "@" in url and "://" in url:
        head, tail = url.split("://", 1)
        creds, hostpart = tail.split("@", 1)
        if ":" in creds:
            user, _pwd = creds.split(":", 1)
            return f"{head}://{user}:******@{hostpart}"
        return url
    return url if url.startswith("sqlite") else "******"


DATABASE_URL = load_settings().database_url

engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None

if DATABASE_URL:
    engine = make_engine(DATABASE_URL, echo=load_settings().sql_echo)
    AsyncSessionLocal = make_session_factory(engine)
    logger.info(f"Creating SQL engine for { _redact_db_url(to_async_url(DATABASE_URL)) }")
else:
    logger.info("No SQL engine created: DATABASE_URL is empty (cache-only mode)")


async def probe_db_connection(bind: Optional[AsyncEngine] = None) -> bool:
    bind = bind or engine
    if bind is None:
        return False
    try:
        async with bind.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
        return True
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")
        return False

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


# Postgres gets JSONB, everything else (sqlite in tests) plain JSON
JsonColumn = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(18, 2, asdecimal=False)
# quantities may be fractional (kg, m); stored exactly enough to round-trip the cache
Quantity = Numeric(18, 4, asdecimal=False)
Ratio = Numeric(12, 4, asdecimal=False)

# -------------------------------------------------------------------
# MODELS (one table per record kind)
# -------------------------------------------------------------------

class RevenueRow(Base):
    __tablename__ = "revenue_data"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    # index of the record inside its record set; reads come back in this order
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[str] = mapped_column(String(16), nullable=False)
    customer: Mapped[str] = mapped_column(Text, nullable=False, default="Unknown")
    model: Mapped[str] = mapped_column(Text, nullable=False, default="")
    part_no: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_pn: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    part_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qty: Mapped[float] = mapped_column(Quantity, nullable=False, default=0)
    amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_revenue_data_year_month", "year", "month"),
    )


class PurchaseRow(Base):
    __tablename__ = "purchase_data"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[str] = mapped_column(String(16), nullable=False)
    date: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    supplier: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    item_code: Mapped[str] = mapped_column(Text, nullable=False, default="")
    item_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    spec: Mapped[str] = mapped_column(Text, nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    qty: Mapped[float] = mapped_column(Quantity, nullable=False, default=0)
    unit_price: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_purchase_data_category_year", "category", "year"),
    )


class InventoryRow(Base):
    __tablename__ = "inventory_data"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inventory_type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    qty: Mapped[float] = mapped_column(Quantity, nullable=False, default=0)
    spec: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_pn: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    storage_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit_price: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    amount: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class SupplierRow(Base):
    __tablename__ = "supplier_data"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    company_name: Mapped[str] = mapped_column(Text, nullable=False)
    business_number: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    ceo: Mapped[str] = mapped_column(Text, nullable=False, default="")
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # {"2025": 1200000.0, ...}
    purchase_amounts: Mapped[dict] = mapped_column(JsonColumn, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class RfqRow(Base):
    __tablename__ = "rfq_data"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    index_no: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    customer: Mapped[str] = mapped_column(Text, nullable=False)
    project_type: Mapped[str] = mapped_column(Text, nullable=False, default="")
    project_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    process: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date_selection: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    date_quotation: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    date_po: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    model: Mapped[str] = mapped_column(Text, nullable=False, default="")
    qty: Mapped[float] = mapped_column(Quantity, nullable=False, default=0)
    unit_price: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    remark: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class SalesPlanRow(Base):
    __tablename__ = "sales_data"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    customer: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    model: Mapped[str] = mapped_column(Text, nullable=False, default="")
    part_no: Mapped[str] = mapped_column(Text, nullable=False, default="")
    part_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # twelve monthly figures, January first
    monthly_plan: Mapped[list] = mapped_column(JsonColumn, nullable=False, default=list)
    monthly_actual: Mapped[list] = mapped_column(JsonColumn, nullable=False, default=list)
    total_plan: Mapped[float] = mapped_column(Quantity, nullable=False, default=0)
    total_actual: Mapped[float] = mapped_column(Quantity, nullable=False, default=0)
    rate: Mapped[float] = mapped_column(Ratio, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class CostReductionRow(Base):
    __tablename__ = "cr_data"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    month: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    total_sales: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    lg_sales: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    lg_cr: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    lg_defense: Mapped[float] = mapped_column(Ratio, nullable=False, default=0)
    mtx_sales: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    mtx_cr: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    mtx_defense: Mapped[float] = mapped_column(Ratio, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


ROW_MODELS: Dict[str, Type[Base]] = {
    "revenue": RevenueRow,
    "purchase": PurchaseRow,
    "inventory": InventoryRow,
    "supplier": SupplierRow,
    "quote_request": RfqRow,
    "sales_plan": SalesPlanRow,
    "cost_reduction": CostReductionRow,
}


async def init_db(bind: Optional[AsyncEngine] = None):
    """Ensure tables exist."""
    bind = bind or engine
    if bind is None:
        logger.info("DB init skipped: no engine configured")
        return
    await probe_db_connection(bind)
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")


async def check_db_health() -> Dict[str, Any]:
    if engine is None:
        return {"status": "not_configured"}
    start = time.time()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "latency_ms": int((time.time() - start) * 1000)}
    except Exception as e:
        logger.warning(f"DB health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
