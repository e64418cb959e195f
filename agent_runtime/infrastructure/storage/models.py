"""
SQLAlchemy ORM Models
Lead rows for the durable repository.
"""
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class LeadRecord(Base):
    """
    One row per lead.

    The full lead document lives in `data`; `phone` and `state` are
    duplicated into columns for the unique index and state queries.
    """
    __tablename__ = "agent_leads"

    id = Column(String(36), primary_key=True)
    phone = Column(String(32), nullable=False, unique=True)
    state = Column(String(40), nullable=False, index=True)
    data = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<LeadRecord(id={self.id}, state={self.state})>"
