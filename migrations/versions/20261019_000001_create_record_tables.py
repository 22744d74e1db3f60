"""Create the per-kind record tables.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(),
        server_default=sa.text("now()"),
        nullable=True,
    )


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=nullable)


def _quantity(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 4), nullable=False)


def _ratio(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 4), nullable=False, server_default="0")


def _position() -> sa.Column:
    return sa.Column("position", sa.Integer(), nullable=False, server_default="0")


def _json(name: str) -> sa.Column:
    return sa.Column(name, sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("revenue_data"):
        op.create_table(
            "revenue_data",
            sa.Column("id", sa.String(), primary_key=True),
            _position(),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("month", sa.String(16), nullable=False),
            sa.Column("customer", sa.Text(), nullable=False),
            sa.Column("model", sa.Text(), nullable=False),
            sa.Column("part_no", sa.Text(), nullable=True),
            sa.Column("customer_pn", sa.Text(), nullable=True),
            sa.Column("part_name", sa.Text(), nullable=True),
            _quantity("qty"),
            _money("amount"),
            _created_at(),
        )
        op.create_index("ix_revenue_data_year_month", "revenue_data", ["year", "month"])

    if not inspector.has_table("purchase_data"):
        op.create_table(
            "purchase_data",
            sa.Column("id", sa.String(), primary_key=True),
            _position(),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("month", sa.String(16), nullable=False),
            sa.Column("date", sa.String(32), nullable=False),
            sa.Column("supplier", sa.Text(), nullable=False),
            sa.Column("type", sa.Text(), nullable=False),
            sa.Column("category", sa.String(16), nullable=False),
            sa.Column("item_code", sa.Text(), nullable=False),
            sa.Column("item_name", sa.Text(), nullable=False),
            sa.Column("spec", sa.Text(), nullable=False),
            sa.Column("unit", sa.String(32), nullable=False),
            _quantity("qty"),
            _money("unit_price"),
            _money("amount"),
            _created_at(),
        )
        op.create_index("ix_purchase_data_category_year", "purchase_data", ["category", "year"])

    if not inspector.has_table("inventory_data"):
        op.create_table(
            "inventory_data",
            sa.Column("id", sa.String(), primary_key=True),
            _position(),
            sa.Column("inventory_type", sa.String(16), nullable=False),
            sa.Column("code", sa.Text(), nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            _quantity("qty"),
            sa.Column("spec", sa.Text(), nullable=True),
            sa.Column("unit", sa.String(32), nullable=True),
            sa.Column("location", sa.Text(), nullable=True),
            sa.Column("customer_pn", sa.Text(), nullable=True),
            sa.Column("model", sa.Text(), nullable=True),
            sa.Column("status", sa.Text(), nullable=True),
            sa.Column("storage_location", sa.Text(), nullable=True),
            sa.Column("item_type", sa.Text(), nullable=True),
            _money("unit_price", nullable=True),
            _money("amount", nullable=True),
            _created_at(),
        )
        op.create_index("ix_inventory_data_inventory_type", "inventory_data", ["inventory_type"])

    if not inspector.has_table("supplier_data"):
        op.create_table(
            "supplier_data",
            sa.Column("id", sa.String(), primary_key=True),
            _position(),
            sa.Column("company_name", sa.Text(), nullable=False),
            sa.Column("business_number", sa.String(32), nullable=False),
            sa.Column("ceo", sa.Text(), nullable=False),
            sa.Column("address", sa.Text(), nullable=False),
            sa.Column(
                "purchase_amounts",
                sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
                nullable=False,
            ),
            _created_at(),
        )

    if not inspector.has_table("rfq_data"):
        op.create_table(
            "rfq_data",
            sa.Column("id", sa.String(), primary_key=True),
            _position(),
            sa.Column("index_no", sa.String(32), nullable=False),
            sa.Column("customer", sa.Text(), nullable=False),
            sa.Column("project_type", sa.Text(), nullable=False),
            sa.Column("project_name", sa.Text(), nullable=False),
            sa.Column("process", sa.Text(), nullable=False),
            sa.Column("status", sa.Text(), nullable=False),
            sa.Column("date_selection", sa.String(32), nullable=False),
            sa.Column("date_quotation", sa.String(32), nullable=False),
            sa.Column("date_po", sa.String(32), nullable=False),
            sa.Column("model", sa.Text(), nullable=False),
            _quantity("qty"),
            _money("unit_price"),
            _money("amount"),
            sa.Column("remark", sa.Text(), nullable=False),
            _created_at(),
        )

    if not inspector.has_table("sales_data"):
        op.create_table(
            "sales_data",
            sa.Column("id", sa.String(), primary_key=True),
            _position(),
            sa.Column("customer", sa.Text(), nullable=False),
            sa.Column("model", sa.Text(), nullable=False),
            sa.Column("part_no", sa.Text(), nullable=False),
            sa.Column("part_name", sa.Text(), nullable=False),
            _json("monthly_plan"),
            _json("monthly_actual"),
            _quantity("total_plan"),
            _quantity("total_actual"),
            _ratio("rate"),
            _created_at(),
        )
        op.create_index("ix_sales_data_customer", "sales_data", ["customer"])

    if not inspector.has_table("cr_data"):
        op.create_table(
            "cr_data",
            sa.Column("id", sa.String(), primary_key=True),
            _position(),
            sa.Column("month", sa.String(16), nullable=False),
            _money("total_sales"),
            _money("lg_sales"),
            _money("lg_cr"),
            _ratio("lg_defense"),
            _money("mtx_sales"),
            _money("mtx_cr"),
            _ratio("mtx_defense"),
            _created_at(),
        )
        op.create_index("ix_cr_data_month", "cr_data", ["month"])


def downgrade() -> None:
    tables = (
        "cr_data",
        "sales_data",
        "rfq_data",
        "supplier_data",
        "inventory_data",
        "purchase_data",
        "revenue_data",
    )
    for table in tables:
        op.drop_table(table)
