"""Track cashier discounts on transactions and add stock counts

Revision ID: 0002_cashier_discount_counts
Revises: 0001_initial_schema
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_cashier_discount_counts"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("manual_discount_cents", sa.Integer(), nullable=False, server_default="0")
        )

    op.create_table(
        "stock_counts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.String(length=64), nullable=False),
        sa.Column("notes", sa.String(length=255), nullable=True),
        # [{product_id, system_quantity, counted_quantity, delta}]
        sa.Column("adjustments", sa.JSON(), nullable=False),
        sa.Column("counted_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id", "document_number", name="uq_stock_counts_store_docnum"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_counts_store_id", "stock_counts", ["store_id"])


def downgrade():
    op.drop_index("ix_stock_counts_store_id", table_name="stock_counts")
    op.drop_table("stock_counts")
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.drop_column("manual_discount_cents")
