"""
Lead Store
CRUD and query surface over a lead repository. No business rules.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from agent_runtime.domain.interfaces.lead_repository import DuplicatePhoneError, LeadRepository
from agent_runtime.domain.models.lead import (
    ContactAttempt,
    ContactDirection,
    CreateLeadRequest,
    Lead,
    LeadState,
    StateChange,
    normalize_phone_number,
    utcnow,
)

logger = logging.getLogger(__name__)

# States the scheduled runner may act on
CONTACTABLE_STATES = (
    LeadState.CONSENT_VERIFIED,
    LeadState.CONTACT_SCHEDULED,
    LeadState.AWAITING_RESPONSE,
)

DEFAULT_MAX_CONTACT_ATTEMPTS = 5


class LeadValidationError(Exception):
    """Raised when lead intake parameters are invalid."""
    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)


class DuplicateLeadError(LeadValidationError):
    """Raised when a lead with the same phone number already exists."""
    def __init__(self, phone: str, existing_id: Optional[str] = None):
        self.phone = phone
        self.existing_id = existing_id
        super().__init__(f"A lead with phone {phone} already exists")


def _is_due(lead: Lead, now: datetime) -> bool:
    return lead.next_contact_at is None or lead.next_contact_at <= now


def is_ready_for_contact(lead: Lead, now: datetime) -> bool:
    return (
        lead.state in CONTACTABLE_STATES
        and lead.consent_verified
        and lead.outbound_attempt_count < lead.max_contact_attempts
        and _is_due(lead, now)
    )


def is_contact_exhausted(lead: Lead, now: datetime) -> bool:
    return (
        lead.state in CONTACTABLE_STATES
        and lead.outbound_attempt_count >= lead.max_contact_attempts
        and _is_due(lead, now)
    )


class LeadStore:
    """
    Lead persistence facade used by the orchestrator.

    Every write goes through `update` (or `add_contact_attempt`, which
    uses it) and stamps `updated_at`.
    """

    def __init__(
        self,
        repository: Optional[LeadRepository] = None,
        default_max_contact_attempts: int = DEFAULT_MAX_CONTACT_ATTEMPTS
    ):
        if repository is None:
            from agent_runtime.infrastructure.storage.memory import InMemoryLeadRepository
            repository = InMemoryLeadRepository()
        self._repository = repository
        self.default_max_contact_attempts = default_max_contact_attempts

    def create(self, params: Union[CreateLeadRequest, Dict[str, Any]]) -> Lead:
        """
        Create a lead from intake parameters.

        A lead whose consent is supplied up front starts in
        `consent_verified`; otherwise it starts in `new`.

        Raises:
            LeadValidationError: If required fields are missing or invalid
            DuplicateLeadError: If the phone number is already taken
        """
        if not isinstance(params, CreateLeadRequest):
            try:
                params = CreateLeadRequest.model_validate(params)
            except ValidationError as e:
                raise LeadValidationError(
                    f"Invalid lead parameters: {e.error_count()} error(s)",
                    errors=e.errors(include_url=False)
                )

        now = utcnow()
        initial_state = LeadState.CONSENT_VERIFIED if params.consent_verified else LeadState.NEW
        trigger = "initial_consent_verified" if params.consent_verified else "lead_created"

        lead = Lead(
            external_id=params.external_id,
            first_name=params.first_name,
            last_name=params.last_name,
            phone=params.phone,
            email=params.email,
            address=params.address,
            state=initial_state,
            state_history=[
                StateChange(
                    from_state=LeadState.NEW,
                    to_state=initial_state,
                    trigger=trigger,
                    timestamp=now,
                    metadata={"source": params.source},
                )
            ],
            consent_verified=params.consent_verified,
            consent_timestamp=now if params.consent_verified else None,
            consent_method=params.consent_method if params.consent_verified else None,
            max_contact_attempts=params.max_contact_attempts or self.default_max_contact_attempts,
            source=params.source,
            created_at=now,
            updated_at=now,
            metadata=params.metadata,
        )

        try:
            created = self._repository.add(lead)
        except DuplicatePhoneError as e:
            raise DuplicateLeadError(e.phone, e.existing_id)

        logger.info(f"Created lead {created.id} ({created.state.value}) from {created.source}")
        return created

    def get_by_id(self, lead_id: str) -> Optional[Lead]:
        return self._repository.get(lead_id)

    def get_by_phone(self, phone: str) -> Optional[Lead]:
        return self._repository.get_by_phone(normalize_phone_number(phone))

    def get_all(self) -> List[Lead]:
        return self._repository.list()

    def get_by_state(self, state: LeadState) -> List[Lead]:
        return self._repository.list(states=[state])

    def update(self, lead_id: str, changes: Dict[str, Any]) -> Optional[Lead]:
        """
        Apply a partial update.

        Args:
            lead_id: Lead to update
            changes: Field name -> new value; `id` and `created_at` are ignored

        Returns:
            The updated lead, or None if it does not exist

        Raises:
            DuplicateLeadError: If a phone change collides with another lead
        """
        current = self._repository.get(lead_id)
        if current is None:
            logger.warning(f"Update for unknown lead {lead_id}")
            return None

        changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
        if "phone" in changes:
            changes["phone"] = normalize_phone_number(changes["phone"])

        data = dict(current)
        data.update(changes)
        data["updated_at"] = utcnow()
        updated = Lead.model_validate(data)

        try:
            return self._repository.save(updated)
        except DuplicatePhoneError as e:
            raise DuplicateLeadError(e.phone, e.existing_id)

    def add_contact_attempt(self, lead_id: str, attempt: ContactAttempt) -> Optional[Lead]:
        """Append an attempt; outbound attempts also move `last_contact_at`."""
        lead = self._repository.get(lead_id)
        if lead is None:
            return None

        changes: Dict[str, Any] = {"contact_attempts": [*lead.contact_attempts, attempt]}
        if attempt.direction == ContactDirection.OUTBOUND:
            changes["last_contact_at"] = attempt.timestamp
        return self.update(lead_id, changes)

    def delete(self, lead_id: str) -> bool:
        """Store-level removal; the workflow never deletes leads."""
        return self._repository.delete(lead_id)

    # Derived queries

    def get_ready_for_contact(self, now: Optional[datetime] = None) -> List[Lead]:
        """
        Leads due for scheduled contact.

        Contactable state, verified consent, outbound attempts below the
        cap, and `next_contact_at` unset or not in the future.
        """
        now = now or utcnow()
        return [
            lead for lead in self._repository.list(states=CONTACTABLE_STATES)
            if is_ready_for_contact(lead, now)
        ]

    def get_contact_exhausted(self, now: Optional[datetime] = None) -> List[Lead]:
        """Due leads in a contactable state that have used every attempt."""
        now = now or utcnow()
        return [
            lead for lead in self._repository.list(states=CONTACTABLE_STATES)
            if is_contact_exhausted(lead, now)
        ]

    def get_awaiting_response(self) -> List[Lead]:
        return self.get_by_state(LeadState.AWAITING_RESPONSE)

    def get_with_confirmed_appointments(self) -> List[Lead]:
        return self.get_by_state(LeadState.APPOINTMENT_CONFIRMED)

    def count_by_state(self, state: LeadState) -> int:
        return len(self.get_by_state(state))

    def get_stats(self) -> Dict[str, Any]:
        leads = self._repository.list()

        by_state: Dict[str, int] = {}
        for lead in leads:
            by_state[lead.state.value] = by_state.get(lead.state.value, 0) + 1

        return {
            "total": len(leads),
            "by_state": by_state,
            "consent_verified": sum(1 for lead in leads if lead.consent_verified),
            "opted_out": by_state.get(LeadState.OPTED_OUT.value, 0),
            "appointments_scheduled": (
                by_state.get(LeadState.APPOINTMENT_PROPOSED.value, 0)
                + by_state.get(LeadState.APPOINTMENT_CONFIRMED.value, 0)
            ),
        }
