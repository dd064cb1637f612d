"""initial salescrm schema

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "a1c2e3f4b5d6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=False),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=False),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    ]


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=False),
        nullable=False,
        server_default=sa.func.current_timestamp(),
    )


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    def _has_index(table: str, name: str) -> bool:
        try:
            return any(ix.get("name") == name for ix in inspect(op.get_bind()).get_indexes(table))
        except Exception:
            return False

    def _ensure_indexes(table: str, indexes: tuple[tuple[str, list[str]], ...]) -> None:
        for idx_name, cols in indexes:
            if not _has_index(table, idx_name):
                op.create_index(idx_name, table, cols)

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("email_confirmed_at", sa.DateTime(timezone=False), nullable=True),
            _created_at(),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _created_at(),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_user_email", sa.String(length=320), nullable=True),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=128), nullable=True),
            sa.Column("entity_id", sa.String(length=128), nullable=True),
            sa.Column("reason", sa.String(length=512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(length=64), nullable=True),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )
    _ensure_indexes(
        "audit_events",
        (
            ("idx_audit_events_created_at", ["created_at"]),
            ("idx_audit_events_action", ["action"]),
        ),
    )

    if "departments" not in existing_tables:
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            _created_at(),
            sa.UniqueConstraint("name", name="uq_departments_name"),
        )

    if "department_groups" not in existing_tables:
        op.create_table(
            "department_groups",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="CASCADE"),
        )
    _ensure_indexes("department_groups", (("idx_department_groups_department_id", ["department_id"]),))

    if "sales_reps" not in existing_tables:
        op.create_table(
            "sales_reps",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="sales_rep"),
            sa.Column("department_id", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("user_id", name="uq_sales_reps_user_id"),
        )
    _ensure_indexes(
        "sales_reps",
        (
            ("idx_sales_reps_name", ["name"]),
            ("idx_sales_reps_department_id", ["department_id"]),
        ),
    )

    if "sales_rep_groups" not in existing_tables:
        op.create_table(
            "sales_rep_groups",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("sales_rep_id", sa.Integer(), nullable=False),
            sa.Column("group_id", sa.Integer(), nullable=False),
            _created_at(),
            sa.ForeignKeyConstraint(["sales_rep_id"], ["sales_reps.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["group_id"], ["department_groups.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("sales_rep_id", name="uq_sales_rep_groups_sales_rep_id"),
        )
    _ensure_indexes("sales_rep_groups", (("idx_sales_rep_groups_group_id", ["group_id"]),))

    if "customers" not in existing_tables:
        op.create_table(
            "customers",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("industry", sa.Text(), nullable=True),
            sa.Column("phone", sa.Text(), nullable=True),
            sa.Column("email", sa.Text(), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("sales_rep_id", sa.Integer(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["sales_rep_id"], ["sales_reps.id"], ondelete="CASCADE"),
        )
    _ensure_indexes(
        "customers",
        (
            ("idx_customers_name", ["name"]),
            ("idx_customers_sales_rep_id", ["sales_rep_id"]),
        ),
    )

    if "deals" not in existing_tables:
        op.create_table(
            "deals",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("sales_rep_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="negotiation"),
            sa.Column("amount", sa.BigInteger(), nullable=True, server_default="0"),
            sa.Column("gross_profit", sa.BigInteger(), nullable=True, server_default="0"),
            sa.Column("category", sa.Text(), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("expected_close_date", sa.Date(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["sales_rep_id"], ["sales_reps.id"], ondelete="CASCADE"),
        )
    _ensure_indexes(
        "deals",
        (
            ("idx_deals_sales_rep_id", ["sales_rep_id"]),
            ("idx_deals_customer_id", ["customer_id"]),
            ("idx_deals_status", ["status"]),
            ("idx_deals_updated_at", ["updated_at"]),
        ),
    )

    if "activities" not in existing_tables:
        op.create_table(
            "activities",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("activity_type", sa.String(length=32), nullable=False, server_default="visit"),
            sa.Column("date", sa.Date(), nullable=False, server_default=sa.func.current_date()),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("deal_id", sa.Integer(), nullable=True),
            sa.Column("sales_rep_id", sa.Integer(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["deal_id"], ["deals.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["sales_rep_id"], ["sales_reps.id"], ondelete="CASCADE"),
        )
    _ensure_indexes(
        "activities",
        (
            ("idx_activities_sales_rep_id", ["sales_rep_id", "date"]),
            ("idx_activities_customer_id", ["customer_id"]),
            ("idx_activities_deal_id", ["deal_id"]),
        ),
    )


def downgrade() -> None:
    op.drop_index("idx_activities_deal_id", table_name="activities")
    op.drop_index("idx_activities_customer_id", table_name="activities")
    op.drop_index("idx_activities_sales_rep_id", table_name="activities")
    op.drop_table("activities")

    op.drop_index("idx_deals_updated_at", table_name="deals")
    op.drop_index("idx_deals_status", table_name="deals")
    op.drop_index("idx_deals_customer_id", table_name="deals")
    op.drop_index("idx_deals_sales_rep_id", table_name="deals")
    op.drop_table("deals")

    op.drop_index("idx_customers_sales_rep_id", table_name="customers")
    op.drop_index("idx_customers_name", table_name="customers")
    op.drop_table("customers")

    op.drop_index("idx_sales_rep_groups_group_id", table_name="sales_rep_groups")
    op.drop_table("sales_rep_groups")

    op.drop_index("idx_sales_reps_department_id", table_name="sales_reps")
    op.drop_index("idx_sales_reps_name", table_name="sales_reps")
    op.drop_table("sales_reps")

    op.drop_index("idx_department_groups_department_id", table_name="department_groups")
    op.drop_table("department_groups")
    op.drop_table("departments")

    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_index("idx_audit_events_created_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("users")
