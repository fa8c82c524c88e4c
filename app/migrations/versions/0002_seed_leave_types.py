"""Seed default leave type catalogue

Revision ID: 0002_seed_leave_types
Revises: 0001_initial
Create Date: 2026-10-19 00:10:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0002_seed_leave_types"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DEFAULT_LEAVE_TYPES = [
    ("Annual Leave", "AL", "Paid yearly leave for rest and vacation", True),
    ("Sick Leave", "SL", "Leave for illness or medical reasons", True),
    ("Casual Leave", "CL", "Short-term unplanned personal leave", True),
    ("Maternity Leave", "ML", "Leave for expecting mothers", True),
    ("Paternity Leave", "PL", "Leave for new fathers", True),
    ("Bereavement Leave", "BL", "Leave for family loss", True),
    ("Marriage Leave", "MR", "Leave for wedding", True),
    ("Compensatory Off", "CO", "Earned leave for extra work", True),
    ("Loss of Pay", "LOP", "Unpaid leave when other leaves are exhausted", False),
    ("Work From Home", "WFH", "Work remotely from home", True),
]

leave_types_table = sa.table(
    "leave_types",
    sa.column("name", sa.String),
    sa.column("code", sa.String),
    sa.column("description", sa.String),
    sa.column("is_paid", sa.Boolean),
    sa.column("is_active", sa.Boolean),
)


def upgrade() -> None:
    bind = op.get_bind()
    existing = bind.execute(sa.text("SELECT count(*) FROM leave_types")).scalar_one()
    if existing:
        return

    op.bulk_insert(
        leave_types_table,
        [
            {
                "name": name,
                "code": code,
                "description": description,
                "is_paid": is_paid,
                "is_active": True,
            }
            for name, code, description, is_paid in DEFAULT_LEAVE_TYPES
        ],
    )


def downgrade() -> None:
    codes = [code for _, code, _, _ in DEFAULT_LEAVE_TYPES]
    op.execute(leave_types_table.delete().where(leave_types_table.c.code.in_(codes)))
