# SPDX-License-Identifier: MIT
"""Constants used throughout the synchronization layer.

This module centralizes:

- **Batch policy**: chunk size, inter-chunk delay and retry bounds for bulk updates
- **Cache windows**: how long a query counts as fresh and how long an unobserved
  query is retained before garbage collection
- **Query key roots**: the first element of every cache key
- **Gateway defaults**: timeouts and the fields a bulk payload may touch
"""

# Batch update policy
DEFAULT_MAX_BATCH_SIZE: int = 50
DEFAULT_BATCH_DELAY_SECONDS: float = 0.1
DEFAULT_MAX_RETRIES: int = 2
DEFAULT_RETRY_DELAY_SECONDS: float = 0.5

# Cache windows (seconds)
DEFAULT_STALE_TIME_SECONDS: float = 300.0  # 5 minutes
DEFAULT_GC_TIME_SECONDS: float = 1800.0  # 30 minutes

# Query key roots
NEWSLETTERS_KEY_ROOT: str = "newsletters"
READING_QUEUE_KEY_ROOT: str = "readingQueue"
UNREAD_COUNT_KEY_ROOT: str = "unreadCount"
SOURCES_KEY_ROOT: str = "newsletterSources"

# Gateway defaults
DEFAULT_GATEWAY_TIMEOUT_SECONDS: float = 30.0
DEFAULT_GATEWAY_BASE_URL: str = "http://localhost:54321/rest/v1"

# Placeholder colour for tags known only by id
DEFAULT_TAG_COLOR: str = "#808080"

# Newsletter fields a partial update may touch
MUTABLE_NEWSLETTER_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "content",
        "summary",
        "image_url",
        "is_read",
        "is_liked",
        "is_archived",
        "newsletter_source_id",
        "source",
        "tags",
        "updated_at",
        "word_count",
        "estimated_read_time",
    }
)

# Default output format for the CLI
DEFAULT_OUTPUT_FORMAT: str = "text"
