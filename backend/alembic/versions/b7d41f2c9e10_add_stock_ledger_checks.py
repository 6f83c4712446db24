"""add stock ledger check constraints

Revision ID: b7d41f2c9e10
Revises: 4f2a9c1d7e30
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "b7d41f2c9e10"
down_revision: Union[str, Sequence[str], None] = "4f2a9c1d7e30"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CHECKS = [
    ("materials", "ck_material_quantity_nonneg", "quantity >= 0"),
    ("materials", "ck_material_min_threshold_nonneg", "min_threshold >= 0"),
    ("workshop_sequences", "ck_workshop_sequence_nonneg", "last_value >= 0"),
    ("stock_movements", "ck_stock_movement_qty_pos", "quantity > 0"),
]


def _add_check_if_missing(table_name: str, constraint_name: str, check_sql: str) -> None:
    # Idempotent Postgres
    op.execute(
        f"""
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1
                FROM pg_constraint c
                JOIN pg_class t ON t.oid = c.conrelid
                WHERE t.relname = '{table_name}'
                  AND c.conname = '{constraint_name}'
            ) THEN
                ALTER TABLE {table_name}
                ADD CONSTRAINT {constraint_name}
                CHECK ({check_sql});
            END IF;
        END $$;
        """
    )


def upgrade() -> None:
    # dirty rows make ADD CONSTRAINT fail; stock is not clamped silently,
    # negative quantities have to be fixed through the ledger first
    for table_name, constraint_name, check_sql in CHECKS:
        _add_check_if_missing(table_name, constraint_name, check_sql)


def downgrade() -> None:
    for table_name, constraint_name, _ in reversed(CHECKS):
        op.execute(f"ALTER TABLE {table_name} DROP CONSTRAINT IF EXISTS {constraint_name};")
