"""create stock ledger tables

Revision ID: 4f2a9c1d7e30
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4f2a9c1d7e30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QTY = sa.Numeric(14, 2)

movement_kind = sa.Enum("IN", "OUT", "TRANSFER", name="movement_kind")


def upgrade() -> None:
    op.create_table(
        "materials",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("classification", sa.String(64)),
        sa.Column("unit", sa.String(32), nullable=False),
        sa.Column("workshop", sa.String(32), nullable=False),
        sa.Column("origin", sa.String(255)),
        sa.Column("note", sa.Text()),
        sa.Column("image", sa.Text()),
        sa.Column("quantity", QTY, nullable=False, server_default="0"),
        sa.Column("opening_quantity", QTY, nullable=False, server_default="0"),
        sa.Column("min_threshold", QTY, nullable=False, server_default="0"),
        sa.Column("last_updated", sa.Date()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_materials_workshop", "materials", ["workshop"])
    op.create_index("ix_materials_workshop_name_origin", "materials", ["workshop", "name", "origin"])

    op.create_table(
        "workshop_sequences",
        sa.Column("workshop", sa.String(32), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("receipt_id", sa.String(64), nullable=False),
        sa.Column(
            "material_id",
            sa.String(64),
            sa.ForeignKey("materials.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("material_name", sa.String(255), nullable=False),
        sa.Column("kind", movement_kind, nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("transaction_time", sa.String(8)),
        sa.Column("created_by", sa.String(100), nullable=False, server_default="SYSTEM"),
        sa.Column("workshop", sa.String(32), nullable=False),
        sa.Column("target_workshop", sa.String(32)),
        sa.Column("target_material_id", sa.String(64), sa.ForeignKey("materials.id", ondelete="RESTRICT")),
        sa.Column("order_code", sa.String(64)),
        sa.Column("note", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_stock_movements_receipt_id", "stock_movements", ["receipt_id"])
    op.create_index("ix_stock_movements_material_id", "stock_movements", ["material_id"])
    op.create_index("ix_stock_movements_target_material_id", "stock_movements", ["target_material_id"])
    op.create_index("ix_stock_movements_business_date", "stock_movements", ["business_date"])
    op.create_index("ix_stock_movements_workshop", "stock_movements", ["workshop"])
    op.create_index("ix_stock_movements_material_date", "stock_movements", ["material_id", "business_date"])


def downgrade() -> None:
    op.drop_table("stock_movements")
    op.drop_table("workshop_sequences")
    op.drop_table("materials")
    movement_kind.drop(op.get_bind(), checkfirst=True)
