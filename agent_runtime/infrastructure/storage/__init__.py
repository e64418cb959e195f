"""Lead storage backends"""
from .memory import InMemoryLeadRepository
from .sql import SQLLeadRepository
from .database import create_db_engine, init_db, session_scope


def create_lead_repository(database_url=None):
    """SQL repository when a database URL is configured, in-memory otherwise."""
    if database_url:
        return SQLLeadRepository.from_url(database_url)
    return InMemoryLeadRepository()
