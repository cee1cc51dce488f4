"""usage pricing, tenant invitations, ai provider/model registry

Revision ID: 0003_pricing_tenants_registry
Revises: 0002_model_messages_status
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0003_pricing_tenants_registry"
down_revision = "0002_model_messages_status"
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        onupdate=sa.func.now(),
        nullable=False,
    )


def _metadata() -> sa.Column:
    return sa.Column("metadata", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb"), nullable=True)


def upgrade() -> None:
    # Tenants and memberships.
    op.add_column(
        "tenants",
        sa.Column("current_member_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.add_column("user_tenant_roles", sa.Column("granted_by", sa.String(length=36), nullable=True))
    op.add_column("user_tenant_roles", sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True))
    # Older rows used invited/left; map them onto the current status set.
    op.execute("UPDATE user_tenant_roles SET membership_status = 'pending' WHERE membership_status = 'invited'")
    op.execute("UPDATE user_tenant_roles SET membership_status = 'inactive' WHERE membership_status = 'left'")
    op.execute(
        "UPDATE tenants SET current_member_count = ("
        "SELECT COUNT(DISTINCT utr.user_id) FROM user_tenant_roles utr "
        "WHERE utr.tenant_id = tenants.id AND utr.membership_status = 'active')"
    )

    op.create_table(
        "tenant_invitations",
        _id(),
        sa.Column(
            "tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("inviter_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("invitee_email", sa.String(length=255), nullable=False),
        sa.Column("invitee_user_id", sa.String(length=36), nullable=True),
        sa.Column("invitation_token", sa.String(length=64), nullable=False, unique=True),
        sa.Column("membership_role", sa.String(length=20), nullable=False, server_default="member"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        _metadata(),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'expired', 'cancelled')",
            name="chk_tenant_invitations_status",
        ),
        sa.CheckConstraint(
            "membership_role IN ('owner', 'admin', 'member', 'viewer')",
            name="chk_tenant_invitations_role",
        ),
    )
    op.create_index("ix_tenant_invitations_tenant_id", "tenant_invitations", ["tenant_id"], unique=False)
    op.create_index("ix_tenant_invitations_inviter_id", "tenant_invitations", ["inviter_id"], unique=False)
    op.create_index("ix_tenant_invitations_invitee_email", "tenant_invitations", ["invitee_email"], unique=False)

    # Provider and model registry.
    op.create_table(
        "ai_providers",
        _id(),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("website_url", sa.Text(), nullable=True),
        sa.Column("api_base_url", sa.Text(), nullable=True),
        sa.Column("documentation_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        _metadata(),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "ai_models",
        _id(),
        sa.Column("provider_id", sa.String(length=36), sa.ForeignKey("ai_providers.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("model_id", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("model_type", sa.String(length=20), nullable=False),
        sa.Column("capabilities", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=True),
        sa.Column("context_window", sa.Integer(), nullable=True),
        sa.Column("max_output_tokens", sa.Integer(), nullable=True),
        sa.Column("input_token_cost_per_1k", sa.Numeric(12, 6), nullable=False, server_default=sa.text("0")),
        sa.Column("output_token_cost_per_1k", sa.Numeric(12, 6), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deprecated_at", sa.DateTime(timezone=True), nullable=True),
        _metadata(),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("provider_id", "model_id", name="uq_ai_models_provider_model"),
        sa.CheckConstraint(
            "model_type IN ('text', 'image', 'audio', 'video', 'multimodal', 'embedding', 'code')",
            name="chk_ai_models_model_type",
        ),
    )
    op.create_index("ix_ai_models_provider_id", "ai_models", ["provider_id"], unique=False)

    # Usage pricing.
    op.create_table(
        "pricing_skus",
        _id(),
        sa.Column("sku_code", sa.String(length=120), nullable=False, unique=True),
        sa.Column("provider_slug", sa.String(length=100), nullable=False),
        sa.Column("model_key", sa.String(length=100), nullable=False),
        sa.Column("model_name", sa.String(length=255), nullable=False),
        sa.Column("modality", sa.String(length=20), nullable=False, server_default="text"),
        sa.Column("usage_kind", sa.String(length=40), nullable=False, server_default="tokens"),
        sa.Column("token_category", sa.String(length=20), nullable=True),
        sa.Column("unit", sa.String(length=20), nullable=False, server_default="tokens"),
        sa.Column("unit_size", sa.BigInteger(), nullable=False, server_default=sa.text("1000000")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _metadata(),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_pricing_skus_provider_slug", "pricing_skus", ["provider_slug"], unique=False)
    op.create_index("ix_pricing_skus_model_key", "pricing_skus", ["model_key"], unique=False)

    op.create_table(
        "pricing_rate_cards",
        _id(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("name", "version", name="uq_pricing_rate_cards_name_version"),
        sa.CheckConstraint("status IN ('draft', 'active', 'retired')", name="chk_pricing_rate_cards_status"),
        sa.CheckConstraint("version > 0", name="chk_pricing_rate_cards_version"),
    )

    op.create_table(
        "pricing_rates",
        _id(),
        sa.Column(
            "rate_card_id",
            sa.String(length=36),
            sa.ForeignKey("pricing_rate_cards.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sku_id", sa.String(length=36), sa.ForeignKey("pricing_skus.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("rate_value", sa.Numeric(18, 8), nullable=False),
        sa.Column("tier_unit", sa.String(length=40), nullable=True),
        sa.Column("tier_min", sa.Numeric(18, 2), nullable=True),
        sa.Column("tier_max", sa.Numeric(18, 2), nullable=True),
        _metadata(),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("rate_value >= 0", name="chk_pricing_rates_rate_value"),
    )
    op.create_index("ix_pricing_rates_rate_card_id", "pricing_rates", ["rate_card_id"], unique=False)
    op.create_index("ix_pricing_rates_sku_id", "pricing_rates", ["sku_id"], unique=False)

    op.create_table(
        "pricing_markup_rules",
        _id(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("provider_slug", sa.String(length=100), nullable=True),
        sa.Column("model_key", sa.String(length=100), nullable=True),
        sa.Column("modality", sa.String(length=20), nullable=True),
        sa.Column("margin_percent", sa.Numeric(8, 3), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("effective_to", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="chk_pricing_markup_rules_status"),
    )


def downgrade() -> None:
    for table in (
        "pricing_markup_rules",
        "pricing_rates",
        "pricing_rate_cards",
        "pricing_skus",
        "ai_models",
        "ai_providers",
        "tenant_invitations",
    ):
        op.drop_table(table)
    op.drop_column("user_tenant_roles", "expires_at")
    op.drop_column("user_tenant_roles", "granted_by")
    op.drop_column("tenants", "current_member_count")
