"""Shared constants across the application."""

# Retry policy for failed syncs
MAX_RETRIES = 5
BASE_BACKOFF_SECONDS = 30
MAX_BACKOFF_SECONDS = 900  # 15 minutes
BACKOFF_JITTER_RATIO = 0.2

# A sync still "running" after this long is assumed to have crashed
STALE_SYNC_THRESHOLD_MINUTES = 15

# Webhook resources and the sync_type recorded for each
WEBHOOK_SYNC_TYPES = {
    "order": "webhook:orders",
    "product": "webhook:products",
    "customer": "webhook:customers",
    "category": "webhook:categories",
}
WEBHOOK_ACTIONS = ["created", "updated"]

# Default limits
FAILED_SYNCS_LIMIT = 50
DUE_RETRIES_LIMIT = 10
RECENT_SYNCS_LIMIT = 10

DEFAULT_CURRENCY = "USD"
DEFAULT_PRODUCT_STATUS = "publish"
DEFAULT_PRODUCT_TYPE = "simple"
