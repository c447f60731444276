"""
Database path utilities for Rhizome services.
"""
from pathlib import Path

from config.settings import settings


def get_graph_db_path() -> str:
    """
    Get the path to the graph database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Path to the graph database file
    """
    db_path = Path(settings.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path)
