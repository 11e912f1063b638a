"""Configuration constants.

Re-exports all constants for convenient importing:
    from kura.constants import MAX_SEARCH_LIMIT
"""

from kura.constants.search import *  # noqa: F403
