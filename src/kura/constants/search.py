"""Search configuration constants.

These values bound the public search contract and the excerpt shown for
each result. Tunable behavior (mode, pool sizes, timeouts) lives in
kura.config instead.
"""

# =============================================================================
# Result Limits
# =============================================================================
# The public contract accepts limits in [MIN_SEARCH_LIMIT, MAX_SEARCH_LIMIT].

DEFAULT_SEARCH_LIMIT = 10
MIN_SEARCH_LIMIT = 1
MAX_SEARCH_LIMIT = 50

# =============================================================================
# Excerpts
# =============================================================================
# Excerpts start a little before the first matched query term so the match
# is shown with some leading context.

SNIPPET_MAX_LENGTH = 200
SNIPPET_LEAD_CHARS = 50

# =============================================================================
# Errors
# =============================================================================
# Suggested client back-off when every search backend is unavailable.

UNAVAILABLE_RETRY_AFTER_SECONDS = 5
