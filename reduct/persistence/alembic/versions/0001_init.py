"""initial schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
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


def _money(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 2), **kwargs)


def upgrade() -> None:
    # Identity.
    op.create_table(
        "tenants",
        _id(),
        sa.Column("slug", sa.String(length=120), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column("tenant_type", sa.String(length=20), nullable=False, server_default="personal"),
        sa.Column("plan_tier", sa.String(length=20), nullable=False, server_default="free"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("owner_user_id", sa.String(length=36), nullable=True),
        _metadata(),
        _created_at(),
        _updated_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_tenants_owner_user_id", "tenants", ["owner_user_id"], unique=False)

    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "roles",
        _id(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("scope", sa.String(length=20), nullable=False, server_default="tenant_custom"),
        sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True),
        sa.Column("is_system_role", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("scope IN ('platform', 'tenant_base', 'tenant_custom')", name="chk_roles_scope"),
    )
    op.create_index("ix_roles_slug", "roles", ["slug"], unique=False)
    op.create_index("ix_roles_tenant_id", "roles", ["tenant_id"], unique=False)

    op.create_table(
        "permissions",
        _id(),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("resource", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    op.create_table(
        "role_permissions",
        sa.Column(
            "role_id", sa.String(length=36), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column(
            "permission_id",
            sa.String(length=36),
            sa.ForeignKey("permissions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _created_at(),
    )

    op.create_table(
        "user_roles",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role_id", sa.String(length=36), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("granted_by", sa.String(length=36), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"], unique=False)
    op.create_index("ix_user_roles_role_id", "user_roles", ["role_id"], unique=False)

    op.create_table(
        "user_tenant_roles",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("role_id", sa.String(length=36), sa.ForeignKey("roles.id", ondelete="SET NULL"), nullable=True),
        sa.Column("membership_status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("is_primary_tenant", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "tenant_id", name="uq_user_tenant_roles_user_tenant"),
    )
    op.create_index("ix_user_tenant_roles_user_id", "user_tenant_roles", ["user_id"], unique=False)
    op.create_index("ix_user_tenant_roles_tenant_id", "user_tenant_roles", ["tenant_id"], unique=False)

    op.create_table(
        "user_providers",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", sa.String(length=30), nullable=False),
        sa.Column("provider_user_id", sa.String(length=255), nullable=False),
        sa.Column("extra_data", postgresql.JSONB(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("provider", "provider_user_id", name="uq_user_providers_provider_subject"),
    )
    op.create_index("ix_user_providers_user_id", "user_providers", ["user_id"], unique=False)

    op.create_table(
        "user_sessions",
        _id(),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=True),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"], unique=False)
    op.create_index("ix_user_sessions_tenant_id", "user_sessions", ["tenant_id"], unique=False)
    op.create_index("ix_user_sessions_token_hash", "user_sessions", ["token_hash"], unique=False)

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=True),
        sa.Column("actor_type", sa.String(length=30), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("actor_role", sa.String(length=50), nullable=True),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("outcome", sa.String(length=20), nullable=False),
        sa.Column("resource_type", sa.String(length=60), nullable=True),
        sa.Column("resource_id", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _metadata(),
        sa.Column("error_code", sa.String(length=100), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"], unique=False)
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"], unique=False)
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)
    op.create_index("ix_audit_events_request_id", "audit_events", ["request_id"], unique=False)

    # AI provider plumbing.
    op.create_table(
        "provider_api_credentials",
        _id(),
        sa.Column(
            "tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("provider_id", sa.String(length=64), nullable=False),
        sa.Column("credential_name", sa.String(length=255), nullable=False),
        sa.Column("api_key_encrypted", sa.Text(), nullable=False),
        sa.Column("api_key_hash", sa.String(length=64), nullable=False),
        sa.Column("endpoint_url", sa.Text(), nullable=True),
        sa.Column("organization_id", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rate_limit_rpm", sa.Integer(), nullable=True),
        sa.Column("rate_limit_tpm", sa.Integer(), nullable=True),
        _metadata(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("tenant_id", "provider_id", "credential_name", name="uq_provider_credentials_name"),
    )
    op.create_index(
        "ix_provider_api_credentials_tenant_id", "provider_api_credentials", ["tenant_id"], unique=False
    )
    op.create_index(
        "ix_provider_api_credentials_provider_id", "provider_api_credentials", ["provider_id"], unique=False
    )

    op.create_table(
        "provider_auth_profiles",
        _id(),
        sa.Column(
            "tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("provider_id", sa.String(length=64), nullable=False),
        sa.Column("profile_key", sa.String(length=100), nullable=False),
        sa.Column("auth_type", sa.String(length=40), nullable=False),
        sa.Column(
            "credential_id",
            sa.String(length=36),
            sa.ForeignKey("provider_api_credentials.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("config", postgresql.JSONB(), nullable=True),
        sa.Column("token_cache_key", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("tenant_id", "provider_id", "profile_key", name="uq_provider_auth_profiles_key"),
    )
    op.create_index("ix_provider_auth_profiles_tenant_id", "provider_auth_profiles", ["tenant_id"], unique=False)
    op.create_index(
        "ix_provider_auth_profiles_provider_id", "provider_auth_profiles", ["provider_id"], unique=False
    )

    op.create_table(
        "prompt_templates",
        _id(),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("purpose", sa.String(length=64), nullable=False),
        sa.Column("body", postgresql.JSONB(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _metadata(),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("tenant_id", "name", "version", name="uq_prompt_templates_name_version"),
    )
    op.create_index("ix_prompt_templates_tenant_id", "prompt_templates", ["tenant_id"], unique=False)

    op.create_table(
        "response_schemas",
        _id(),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("strict", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("schema", postgresql.JSONB(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("tenant_id", "name", "version", name="uq_response_schemas_name_version"),
    )
    op.create_index("ix_response_schemas_tenant_id", "response_schemas", ["tenant_id"], unique=False)

    op.create_table(
        "ai_web_search_settings",
        sa.Column("tenant_id", sa.String(length=36), primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("default_allowed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provider", sa.String(length=30), nullable=False, server_default="serper"),
        sa.Column("enabled_providers", postgresql.JSONB(), nullable=True),
        sa.Column("max_search_calls", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("max_total_snippet_tokens", sa.Integer(), nullable=False, server_default="1200"),
        sa.Column("timeout_ms", sa.Integer(), nullable=False, server_default="10000"),
        sa.Column("retry_max", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("retry_base_delay_ms", sa.Integer(), nullable=False, server_default="500"),
        sa.Column("retry_max_delay_ms", sa.Integer(), nullable=False, server_default="2000"),
        _updated_at(),
    )

    op.create_table(
        "model_conversations",
        _id(),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("model_id", sa.String(length=100), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_model_conversations_tenant_id", "model_conversations", ["tenant_id"], unique=False)
    op.create_index("ix_model_conversations_user_id", "model_conversations", ["user_id"], unique=False)

    # model_messages.status arrives in 0002.
    op.create_table(
        "model_messages",
        _id(),
        sa.Column(
            "conversation_id",
            sa.String(length=36),
            sa.ForeignKey("model_conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        _metadata(),
        sa.Column("message_order", sa.Integer(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("conversation_id", "message_order", name="uq_model_messages_order"),
    )
    op.create_index("ix_model_messages_conversation_id", "model_messages", ["conversation_id"], unique=False)

    # Billing.
    op.create_table(
        "billing_plans",
        _id(),
        sa.Column("slug", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("tier", sa.String(length=20), nullable=False),
        sa.Column("tenant_type", sa.String(length=20), nullable=False, server_default="personal"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("included_seats", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_seats", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        _metadata(),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "billing_plan_prices",
        _id(),
        sa.Column(
            "plan_id", sa.String(length=36), sa.ForeignKey("billing_plans.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("billing_cycle", sa.String(length=20), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        _money("amount", nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("effective_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_index(
        "ix_billing_plan_prices_lookup",
        "billing_plan_prices",
        ["plan_id", "billing_cycle", "currency"],
        unique=False,
    )

    op.create_table(
        "billing_accounts",
        _id(),
        sa.Column("tenant_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("billing_email", sa.String(length=255), nullable=True),
        sa.Column("billing_name", sa.String(length=255), nullable=True),
        sa.Column("country_code", sa.String(length=2), nullable=True),
        sa.Column("tax_country_code", sa.String(length=2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("payment_method_summary", postgresql.JSONB(), nullable=True),
        _metadata(),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "billing_subscriptions",
        _id(),
        sa.Column("tenant_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("plan_id", sa.String(length=36), sa.ForeignKey("billing_plans.id"), nullable=False),
        sa.Column("billing_cycle", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        _metadata(),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "billing_invoices",
        _id(),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("subscription_id", sa.String(length=36), nullable=True),
        sa.Column("billing_account_id", sa.String(length=36), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=False, unique=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        _money("subtotal", nullable=False),
        _money("tax", nullable=False, server_default="0"),
        _money("total", nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        _metadata(),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_billing_invoices_tenant_id", "billing_invoices", ["tenant_id"], unique=False)

    op.create_table(
        "billing_invoice_line_items",
        _id(),
        sa.Column(
            "invoice_id",
            sa.String(length=36),
            sa.ForeignKey("billing_invoices.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        _money("unit_price", nullable=False),
        _money("amount", nullable=False),
        _metadata(),
        _created_at(),
    )
    op.create_index(
        "ix_billing_invoice_line_items_invoice_id", "billing_invoice_line_items", ["invoice_id"], unique=False
    )

    op.create_table(
        "billing_transactions",
        _id(),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("invoice_id", sa.String(length=36), nullable=True),
        sa.Column("provider", sa.String(length=20), nullable=False, server_default="toss"),
        sa.Column("transaction_type", sa.String(length=20), nullable=False, server_default="charge"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        _money("amount", nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("provider_transaction_id", sa.String(length=255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _metadata(),
        _created_at(),
    )
    op.create_index("ix_billing_transactions_tenant_id", "billing_transactions", ["tenant_id"], unique=False)
    op.create_index("ix_billing_transactions_invoice_id", "billing_transactions", ["invoice_id"], unique=False)

    op.create_table(
        "tax_rates",
        _id(),
        sa.Column("country_code", sa.String(length=2), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("rate_percent", sa.Numeric(6, 3), nullable=False),
        sa.Column("effective_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_tax_rates_country_code", "tax_rates", ["country_code"], unique=False)

    op.create_table(
        "fx_rates",
        _id(),
        sa.Column("base_currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("quote_currency", sa.String(length=3), nullable=False),
        sa.Column("rate", sa.Numeric(18, 8), nullable=False),
        sa.Column("source", sa.String(length=40), nullable=False, server_default="manual"),
        sa.Column("effective_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("ix_fx_rates_quote_currency", "fx_rates", ["quote_currency"], unique=False)

    # Credits.
    op.create_table(
        "credit_accounts",
        _id(),
        sa.Column("owner_type", sa.String(length=10), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=True),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("credit_type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("balance_credits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _metadata(),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_credit_accounts_tenant_id", "credit_accounts", ["tenant_id"], unique=False)
    op.create_index("ix_credit_accounts_user_id", "credit_accounts", ["user_id"], unique=False)

    op.create_table(
        "credit_ledger_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("credit_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entry_type", sa.String(length=30), nullable=False),
        sa.Column("amount_credits", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("reference_type", sa.String(length=40), nullable=True),
        sa.Column("reference_id", sa.String(length=64), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        _metadata(),
        _created_at(),
    )
    op.create_index("ix_credit_ledger_entries_account_id", "credit_ledger_entries", ["account_id"], unique=False)
    op.create_index("ix_credit_ledger_entries_entry_type", "credit_ledger_entries", ["entry_type"], unique=False)

    op.create_table(
        "credit_topup_products",
        _id(),
        sa.Column("sku", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        _money("price", nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("credits", sa.BigInteger(), nullable=False),
        sa.Column("bonus_credits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _metadata(),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "credit_plan_grants",
        _id(),
        sa.Column("plan_slug", sa.String(length=64), nullable=False),
        sa.Column("billing_cycle", sa.String(length=20), nullable=False),
        sa.Column("monthly_credits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("initial_credits", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("expires_in_days", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _metadata(),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("plan_slug", "billing_cycle", name="uq_credit_plan_grants_plan_cycle"),
    )

    # i18n.
    op.create_table(
        "i18n_languages",
        _id(),
        sa.Column("code", sa.String(length=16), nullable=False, unique=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("native_name", sa.String(length=100), nullable=True),
        sa.Column("direction", sa.String(length=3), nullable=False, server_default="ltr"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "i18n_namespaces",
        _id(),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "i18n_translation_keys",
        _id(),
        sa.Column(
            "namespace_id",
            sa.String(length=36),
            sa.ForeignKey("i18n_namespaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("namespace_id", "key", name="uq_i18n_keys_namespace_key"),
    )
    op.create_index(
        "ix_i18n_translation_keys_namespace_id", "i18n_translation_keys", ["namespace_id"], unique=False
    )

    op.create_table(
        "i18n_translations",
        _id(),
        sa.Column(
            "key_id",
            sa.String(length=36),
            sa.ForeignKey("i18n_translation_keys.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "language_id",
            sa.String(length=36),
            sa.ForeignKey("i18n_languages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("value", sa.Text(), nullable=False, server_default=""),
        sa.Column("updated_by", sa.String(length=36), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("key_id", "language_id", name="uq_i18n_translations_key_language"),
    )
    op.create_index("ix_i18n_translations_key_id", "i18n_translations", ["key_id"], unique=False)
    op.create_index("ix_i18n_translations_language_id", "i18n_translations", ["language_id"], unique=False)

    op.create_table(
        "i18n_translation_history",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "translation_id",
            sa.String(length=36),
            sa.ForeignKey("i18n_translations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=False),
        sa.Column("changed_by", sa.String(length=36), nullable=True),
        sa.Column("change_reason", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_i18n_translation_history_translation_id",
        "i18n_translation_history",
        ["translation_id"],
        unique=False,
    )


def downgrade() -> None:
    # Children before parents; indexes go with their tables.
    for table in (
        "i18n_translation_history",
        "i18n_translations",
        "i18n_translation_keys",
        "i18n_namespaces",
        "i18n_languages",
        "credit_plan_grants",
        "credit_topup_products",
        "credit_ledger_entries",
        "credit_accounts",
        "fx_rates",
        "tax_rates",
        "billing_transactions",
        "billing_invoice_line_items",
        "billing_invoices",
        "billing_subscriptions",
        "billing_accounts",
        "billing_plan_prices",
        "billing_plans",
        "model_messages",
        "model_conversations",
        "ai_web_search_settings",
        "response_schemas",
        "prompt_templates",
        "provider_auth_profiles",
        "provider_api_credentials",
        "audit_events",
        "user_sessions",
        "user_providers",
        "user_tenant_roles",
        "user_roles",
        "role_permissions",
        "permissions",
        "roles",
        "users",
        "tenants",
    ):
        op.drop_table(table)
