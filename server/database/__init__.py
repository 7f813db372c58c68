"""
Database package for the circuit lab notebook.

SQLAlchemy setup for storing experiment records.
"""

from .models import Base, ExperimentRecordRow
from .database import (
    create_database_engine,
    create_session_factory,
    get_session,
    create_tables,
    check_db_connection,
)

__all__ = [
    "Base",
    "ExperimentRecordRow",
    "create_database_engine",
    "create_session_factory",
    "get_session",
    "create_tables",
    "check_db_connection"
]
