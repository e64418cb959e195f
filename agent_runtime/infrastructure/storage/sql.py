"""
SQL Lead Repository
Durable lead storage on SQLAlchemy.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from agent_runtime.domain.interfaces.lead_repository import DuplicatePhoneError, LeadRepository
from agent_runtime.domain.models.lead import Lead, LeadState
from agent_runtime.infrastructure.storage.database import (
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from agent_runtime.infrastructure.storage.models import LeadRecord

logger = logging.getLogger(__name__)


def _to_record_values(lead: Lead) -> dict:
    return {
        "phone": lead.phone,
        "state": lead.state.value,
        "data": lead.model_dump(mode="json"),
        "created_at": lead.created_at,
        "updated_at": lead.updated_at,
    }


def _to_lead(record: LeadRecord) -> Lead:
    return Lead.model_validate(record.data)


class SQLLeadRepository(LeadRepository):
    """
    Lead repository on any SQLAlchemy-supported database.

    The unique `phone` column enforces the phone index; a clash surfaces
    as DuplicatePhoneError.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        init_db(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "SQLLeadRepository":
        return cls(create_db_engine(database_url))

    def _find_phone_owner(self, phone: str) -> Optional[str]:
        with session_scope(self._session_factory) as db:
            return db.scalar(select(LeadRecord.id).where(LeadRecord.phone == phone))

    def add(self, lead: Lead) -> Lead:
        try:
            with session_scope(self._session_factory) as db:
                db.add(LeadRecord(id=lead.id, **_to_record_values(lead)))
        except IntegrityError:
            raise DuplicatePhoneError(lead.phone, self._find_phone_owner(lead.phone))

        logger.debug(f"Inserted lead {lead.id}")
        return lead.model_copy(deep=True)

    def save(self, lead: Lead) -> Lead:
        try:
            with session_scope(self._session_factory) as db:
                record = db.get(LeadRecord, lead.id)
                if record is None:
                    raise KeyError(lead.id)
                for key, value in _to_record_values(lead).items():
                    setattr(record, key, value)
        except IntegrityError:
            raise DuplicatePhoneError(lead.phone, self._find_phone_owner(lead.phone))

        return lead.model_copy(deep=True)

    def get(self, lead_id: str) -> Optional[Lead]:
        with session_scope(self._session_factory) as db:
            record = db.get(LeadRecord, lead_id)
            return _to_lead(record) if record else None

    def get_by_phone(self, phone: str) -> Optional[Lead]:
        with session_scope(self._session_factory) as db:
            record = db.scalar(select(LeadRecord).where(LeadRecord.phone == phone))
            return _to_lead(record) if record else None

    def list(self, states: Optional[Iterable[LeadState]] = None) -> List[Lead]:
        query = select(LeadRecord).order_by(LeadRecord.created_at)
        if states is not None:
            query = query.where(LeadRecord.state.in_([state.value for state in states]))

        with session_scope(self._session_factory) as db:
            return [_to_lead(record) for record in db.scalars(query)]

    def delete(self, lead_id: str) -> bool:
        with session_scope(self._session_factory) as db:
            record = db.get(LeadRecord, lead_id)
            if record is None:
                return False
            db.delete(record)
            return True

    def count(self) -> int:
        with session_scope(self._session_factory) as db:
            return db.scalar(select(func.count()).select_from(LeadRecord)) or 0
