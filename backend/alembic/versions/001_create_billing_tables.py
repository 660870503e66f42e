"""Create billing tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17

WHAT: Creates profiles, invite_codes, subscriptions and
webhook_event_failures together with their enum types.

WHY: These four tables are the whole state of the billing service:
1. profiles carry the projected subscription status
2. invite_codes is the single-use code ledger
3. subscriptions mirror Stripe, one row per Stripe subscription
4. webhook_event_failures is the dead-letter store for failed handlers

HOW: Enum types are created idempotently with DO blocks and referenced with
create_type=False, so re-running against a partially migrated database does
not fail on existing types.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUM_TYPES = {
    "profilerole": ("admin", "member"),
    "profilesubscriptionstatus": (
        "none", "active", "trialing", "past_due", "canceled", "paused", "incomplete", "unknown",
    ),
    "invitepaymentstatus": ("none", "pending_payment", "paid", "free_trial", "comped"),
    "invitetier": ("standard", "founding"),
    "subscriptionplan": ("monthly", "annual"),
    "subscriptionstatus": (
        "active", "trialing", "past_due", "canceled", "paused", "incomplete", "unknown",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    """Create enum types, then tables in foreign key order."""
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(f"""
            DO $$
            BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{name}') THEN
                    CREATE TYPE {name} AS ENUM ({labels});
                END IF;
            END$$;
        """)

    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", _enum("profilerole"), nullable=False, server_default="member"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column(
            "subscription_status",
            _enum("profilesubscriptionstatus"),
            nullable=False,
            server_default="none",
        ),
        sa.Column("trial_end", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_profiles_id", "profiles", ["id"])
    op.create_index("ix_profiles_email", "profiles", ["email"], unique=True)

    op.create_table(
        "invite_codes",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column(
            "created_by",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("recipient_name", sa.String(length=255), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("payment_status", _enum("invitepaymentstatus"), nullable=False, server_default="none"),
        sa.Column("tier", _enum("invitetier"), nullable=False, server_default="standard"),
        sa.Column("trial_days", sa.Integer(), nullable=True),
        sa.Column("stripe_checkout_session_id", sa.String(length=255), nullable=True),
        sa.Column("checkout_url", sa.Text(), nullable=True),
        sa.Column(
            "used_by",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default="false"),
        *_timestamps(),
    )
    op.create_index("ix_invite_codes_id", "invite_codes", ["id"])
    # WHY: Uniqueness of code is what generation retries against
    op.create_index("ix_invite_codes_code", "invite_codes", ["code"], unique=True)
    op.create_index("ix_invite_codes_email", "invite_codes", ["email"])
    op.create_index(
        "ix_invite_codes_stripe_checkout_session_id",
        "invite_codes",
        ["stripe_checkout_session_id"],
        unique=True,
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_checkout_session_id", sa.String(length=255), nullable=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("plan", _enum("subscriptionplan"), nullable=False, server_default="monthly"),
        sa.Column("status", _enum("subscriptionstatus"), nullable=False, server_default="active"),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("trial_end", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_id", "subscriptions", ["id"])
    # WHY: Upserts conflict on this column
    op.create_index(
        "ix_subscriptions_stripe_subscription_id",
        "subscriptions",
        ["stripe_subscription_id"],
        unique=True,
    )
    op.create_index("ix_subscriptions_stripe_customer_id", "subscriptions", ["stripe_customer_id"])
    op.create_index(
        "ix_subscriptions_stripe_checkout_session_id",
        "subscriptions",
        ["stripe_checkout_session_id"],
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])

    op.create_table(
        "webhook_event_failures",
        sa.Column("id", sa.Integer(), nullable=False, primary_key=True),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("error", sa.Text(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_webhook_event_failures_id", "webhook_event_failures", ["id"])
    op.create_index("ix_webhook_event_failures_event_id", "webhook_event_failures", ["event_id"])


def downgrade() -> None:
    """Drop tables in reverse order, then the enum types."""
    op.drop_table("webhook_event_failures")
    op.drop_table("subscriptions")
    op.drop_table("invite_codes")
    op.drop_table("profiles")

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
