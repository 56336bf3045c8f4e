"""Core constants: key domains, job types, topics and shared literal values.

Single source of truth for the key scheme used by the cooldown/lock store:
every key is ``{domain}:{name}:{entity_id}``.
"""

# Key domains for the cooldown/lock store
KEY_DOMAIN_COOLDOWN = "cooldown"
KEY_DOMAIN_LOCK = "lock"
KEY_DOMAIN_LAST_GOOD = "lastgood"

# Delimiter for composite keys
KEY_SEP = ":"

# Entity id used by time-triggered firings; the executor expands scope itself
ALL_IN_SCOPE = "*"

# Built-in job types
JOB_PUBLISH_PRICE_CHANGE = "PUBLISH_PRICE_CHANGE"
JOB_APPLY_LISTING_TEMPLATE = "APPLY_LISTING_TEMPLATE"
JOB_COMPUTE_FEATURES = "COMPUTE_FEATURES"
JOB_SYNC_CATALOG = "SYNC_CATALOG"
JOB_REFRESH_MATERIALIZED_VIEWS = "REFRESH_MATERIALIZED_VIEWS"

DEFAULT_JOB_TYPE_TIMEOUTS: dict[str, float] = {
    JOB_PUBLISH_PRICE_CHANGE: 60.0,
    JOB_APPLY_LISTING_TEMPLATE: 120.0,
    JOB_COMPUTE_FEATURES: 30.0,
    JOB_SYNC_CATALOG: 300.0,
    JOB_REFRESH_MATERIALIZED_VIEWS: 600.0,
}

# Advisory lock name guarding per-entity feature recomputation
LOCK_FEATURE_RECOMPUTE = "feature-recompute"

# Event bus topics
METRIC_TOPIC_PREFIX = "metric"
COMPETITOR_TOPIC_PREFIX = "competitor"
COMPETITOR_TOPIC_PATTERN = "competitor.*"
TOPIC_SEP = "."

# Redis pub/sub channel prefix for relayed bus events
REDIS_EVENT_CHANNEL_PREFIX = "sellerops_events"

# Review tasks created for approval-required rules
APPROVAL_TASK_STAGE = "review"
AUTOMATION_TASK_SOURCE = "automation"
