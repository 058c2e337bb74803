"""create payments and payment_methods tables

Revision ID: 1a_create_payments
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "1a_create_payments"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PAYMENT_STATES = (
    "new",
    "authorization",
    "authorization_voided",
    "authorization_expired",
    "capture_completed",
    "capture_partially_refunded",
    "capture_refunded",
)


def upgrade() -> None:
    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_gateway", sa.String(64), nullable=False),
        sa.Column("remote_id", sa.String(255)),
        sa.Column("card_type", sa.String(32)),
        sa.Column("card_number", sa.String(4)),
        sa.Column("card_exp_month", sa.Integer()),
        sa.Column("card_exp_year", sa.Integer()),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("owner_id", sa.Integer()),
        sa.Column("created_at", sa.DateTime()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_methods_remote_id", "payment_methods", ["remote_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("payment_gateway", sa.String(64), nullable=False),
        sa.Column(
            "payment_method_id", sa.Integer(), sa.ForeignKey("payment_methods.id")
        ),
        sa.Column(
            "state",
            sa.Enum(*PAYMENT_STATES, name="paymentstate"),
            nullable=False,
            server_default="new",
        ),
        sa.Column("amount_number", sa.Numeric(19, 6), nullable=False),
        sa.Column("refunded_number", sa.Numeric(19, 6), nullable=False),
        sa.Column("currency_code", sa.String(3), nullable=False),
        sa.Column("remote_id", sa.String(255)),
        sa.Column("remote_state", sa.String(64)),
        sa.Column("refund_remote_ids", sa.JSON(), nullable=False),
        sa.Column("test", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("authorized_at", sa.DateTime(timezone=True)),
        sa.Column("captured_at", sa.DateTime(timezone=True)),
        sa.Column("authorization_expires_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"])
    op.create_index("ix_payments_remote_id", "payments", ["remote_id"])
    op.create_index("ix_payments_order_state", "payments", ["order_id", "state"])


def downgrade() -> None:
    op.drop_index("ix_payments_order_state", table_name="payments")
    op.drop_index("ix_payments_remote_id", table_name="payments")
    op.drop_index("ix_payments_order_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_payment_methods_remote_id", table_name="payment_methods")
    op.drop_table("payment_methods")
    sa.Enum(name="paymentstate").drop(op.get_bind(), checkfirst=True)
