"""Application constants."""

from datetime import timedelta

# Contact tags
SEGMENT_TAG_PREFIX = "segment="
OUTCOME_TAG_PREFIX = "outcome="
# Demo data carries this tag and must never be auto-suppressed.
SYNTHETIC_TAG = "synthetic"

# Hour-of-week buckets (7 days x 24 hours, Sunday = day 0)
HOURS_PER_DAY = 24
HOURS_PER_WEEK = 7 * HOURS_PER_DAY

# Send-time optimizer
SMOOTHING_ALPHA = 5
DEFAULT_PRIOR = 0.05
SEND_COOLDOWN = timedelta(hours=24)

# Flow engine: recommendations further out than this become scheduled messages
SCHEDULE_THRESHOLD = timedelta(minutes=5)
CONTACT_NOT_IN_SEGMENT_REASON = "Contact no longer in segment"

# Hygiene risk scorer
HYGIENE_SUPPRESSION_REASON = "hygiene-risk"
STALE_EVENT_THRESHOLD_DAYS = 60
STALE_SEND_THRESHOLD_DAYS = 90
LOW_PROPENSITY_THRESHOLD = 0.15

# Outbound tags forwarded to the mail provider
MAX_PROVIDER_TAGS = 8

# Delivery outcome polling
OUTCOME_POLL_WINDOW = timedelta(minutes=120)
OUTCOME_POLL_BATCH_SIZE = 100
