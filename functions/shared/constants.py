"""
Shared constants for the billing and account functions.
"""

# Supabase tables
CUSTOMERS_TABLE = "stripe_customers"
CHECKOUT_SESSIONS_TABLE = "stripe_checkout_sessions"
WEBHOOK_EVENTS_TABLE = "stripe_webhook_events"

# Supabase RPCs (atomicity lives in these stored procedures)
RATE_LIMIT_RPC = "check_rate_limit"
CLAIM_WEBHOOK_EVENT_RPC = "claim_stripe_webhook_event"

# Checkout session reuse
CHECKOUT_CACHE_KEY_VERSION = "v1"
CHECKOUT_IDEMPOTENCY_BUCKET_SECONDS = 600
CHECKOUT_CACHE_SKEW_SECONDS = 5
# Used when Stripe does not report an expiry (Stripe's own default is 24h)
CHECKOUT_CACHE_DEFAULT_TTL_SECONDS = 24 * 60 * 60

# Subscription statuses that still bill (or may bill) the customer
ACTIVE_LIKE_STATUSES = frozenset({"active", "trialing", "past_due", "unpaid", "incomplete"})

# Account deletion
DELETE_CONFIRMATION = "DELETE"
CANCEL_LIST_LIMIT = 10

# Billing portal
DEFAULT_PORTAL_RETURN_PATH = "/me"
