from __future__ import annotations


PLAN_TIERS = ("free", "pro", "premium", "business", "enterprise")
TENANT_TYPES = ("personal", "team", "group")
BILLING_CYCLES = ("monthly", "yearly")
PRICE_STATUSES = ("active", "draft", "retired")
SUBSCRIPTION_STATUSES = ("active", "cancelled", "past_due", "trialing", "suspended", "scheduled_cancel")
INVOICE_STATUSES = ("draft", "open", "paid", "void", "uncollectible")
TRANSACTION_TYPES = ("charge", "refund", "adjustment")
TRANSACTION_STATUSES = ("pending", "succeeded", "failed", "refunded", "cancelled")
PAYMENT_PROVIDERS = ("toss", "stripe")
FX_SOURCES = ("manual", "operating", "market")
