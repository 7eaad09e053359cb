"""create rental billing tables

Revision ID: 5e2c8a17d4b9
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5e2c8a17d4b9"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "rental_payment_entries",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("company_id", sa.String(), nullable=False),
        sa.Column("entry_kind", sa.String(), nullable=False),
        sa.Column("invoice_type", sa.String(), nullable=False),
        sa.Column("invoice_number", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("grand_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("rental_id", sa.String(), nullable=True),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("send_details_to", sa.String(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("count_image", sa.JSON(), nullable=True),
        sa.Column("invoice_links", sa.JSON(), nullable=False),
        sa.Column("mode_of_payment", sa.String(), nullable=True),
        sa.Column("bank_name", sa.String(), nullable=True),
        sa.Column("transaction_details", sa.String(), nullable=True),
        sa.Column("cheque_date", sa.Date(), nullable=True),
        sa.Column("transfer_date", sa.Date(), nullable=True),
        sa.Column("company_name_payment", sa.String(), nullable=True),
        sa.Column("other_payment_mode", sa.String(), nullable=True),
        sa.Column("entry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "invoice_type IN ('quotation', 'invoice')",
            name="ck_rental_payment_entries_invoice_type_allowed",
        ),
        sa.CheckConstraint(
            "status IN ('unpaid', 'partially_paid', 'paid', 'cancelled')",
            name="ck_rental_payment_entries_status_allowed",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_rental_payment_entries_id"), "rental_payment_entries", ["id"], unique=False)
    op.create_index(op.f("ix_rental_payment_entries_company_id"), "rental_payment_entries", ["company_id"], unique=False)
    op.create_index(
        op.f("ix_rental_payment_entries_invoice_number"),
        "rental_payment_entries",
        ["invoice_number"],
        unique=False,
    )
    op.create_index(op.f("ix_rental_payment_entries_rental_id"), "rental_payment_entries", ["rental_id"], unique=False)
    op.create_index(op.f("ix_rental_payment_entries_created_at"), "rental_payment_entries", ["created_at"], unique=False)
    op.create_index(
        "ix_rental_payment_entries_type_created_at",
        "rental_payment_entries",
        ["invoice_type", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_rental_payment_entries_assignee_type",
        "rental_payment_entries",
        ["assigned_to", "invoice_type"],
        unique=False,
    )

    op.create_table(
        "rental_product_entries",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("device_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("a3_config", sa.JSON(), nullable=True),
        sa.Column("a4_config", sa.JSON(), nullable=True),
        sa.Column("a5_config", sa.JSON(), nullable=True),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("gst_percentage", sa.Numeric(7, 3), nullable=False),
        sa.Column("commission_rate", sa.Numeric(7, 3), nullable=False),
        sa.Column("amount_with_tax", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("computed_total", sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["rental_payment_entries.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_rental_product_entries_id"), "rental_product_entries", ["id"], unique=False)
    op.create_index(op.f("ix_rental_product_entries_entry_id"), "rental_product_entries", ["entry_id"], unique=False)
    op.create_index(op.f("ix_rental_product_entries_device_id"), "rental_product_entries", ["device_id"], unique=False)

    op.create_table(
        "global_counter",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sequence_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("format_template", sa.String(), nullable=True),
        sa.Column("from_mail", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.execute("INSERT INTO global_counter (id, sequence_value) VALUES (1, 0)")


def downgrade() -> None:
    op.drop_table("global_counter")

    op.drop_index(op.f("ix_rental_product_entries_device_id"), table_name="rental_product_entries")
    op.drop_index(op.f("ix_rental_product_entries_entry_id"), table_name="rental_product_entries")
    op.drop_index(op.f("ix_rental_product_entries_id"), table_name="rental_product_entries")
    op.drop_table("rental_product_entries")

    op.drop_index("ix_rental_payment_entries_assignee_type", table_name="rental_payment_entries")
    op.drop_index("ix_rental_payment_entries_type_created_at", table_name="rental_payment_entries")
    op.drop_index(op.f("ix_rental_payment_entries_created_at"), table_name="rental_payment_entries")
    op.drop_index(op.f("ix_rental_payment_entries_rental_id"), table_name="rental_payment_entries")
    op.drop_index(op.f("ix_rental_payment_entries_invoice_number"), table_name="rental_payment_entries")
    op.drop_index(op.f("ix_rental_payment_entries_company_id"), table_name="rental_payment_entries")
    op.drop_index(op.f("ix_rental_payment_entries_id"), table_name="rental_payment_entries")
    op.drop_table("rental_payment_entries")
