# Rhizome Utilities
"""
Shared utility functions for Rhizome services.
"""

from rhizome.utils.datetime_utils import make_aware, utc_now, parse_timestamp, days_since
from rhizome.utils.db_paths import get_graph_db_path

__all__ = ["make_aware", "utc_now", "parse_timestamp", "days_since", "get_graph_db_path"]
