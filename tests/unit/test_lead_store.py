"""
Unit Tests for the Lead Store
Runs against both the in-memory and the SQL (sqlite) repositories.
"""
from datetime import timedelta

import pytest

from agent_runtime.domain.models.lead import (
    ContactAttempt,
    ContactChannel,
    ContactDirection,
    ContactStatus,
    LeadState,
)
from agent_runtime.infrastructure.storage import (
    InMemoryLeadRepository,
    SQLLeadRepository,
    create_lead_repository,
)
from agent_runtime.services.lead_store import DuplicateLeadError, LeadStore, LeadValidationError

from conftest import FIXED_NOW, lead_params


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return LeadStore(InMemoryLeadRepository())
    return LeadStore(SQLLeadRepository.from_url("sqlite:///:memory:"))


def outbound_attempt(lead_id: str, status: ContactStatus = ContactStatus.SENT) -> ContactAttempt:
    return ContactAttempt(
        lead_id=lead_id,
        channel=ContactChannel.SMS,
        direction=ContactDirection.OUTBOUND,
        timestamp=FIXED_NOW,
        message="hello",
        status=status,
    )


class TestCreate:
    """Tests for lead creation."""

    def test_create_with_consent(self, store):
        """Consent up front starts the lead in consent_verified with one history entry."""
        lead = store.create(lead_params())

        assert lead.state == LeadState.CONSENT_VERIFIED
        assert len(lead.state_history) == 1
        assert lead.state_history[0].trigger == "initial_consent_verified"
        assert lead.consent_timestamp is not None
        assert lead.max_contact_attempts == 5

    def test_create_without_consent(self, store):
        """No consent starts the lead in new."""
        lead = store.create(lead_params(consent_verified=False))

        assert lead.state == LeadState.NEW
        assert lead.consent_method is None
        assert lead.consent_timestamp is None

    def test_missing_name_rejected(self, store):
        """Missing required fields never create a lead."""
        with pytest.raises(LeadValidationError) as exc_info:
            store.create(lead_params(first_name="  "))

        assert exc_info.value.errors
        assert store.get_all() == []

    def test_short_phone_rejected(self, store):
        """Phone numbers need at least 7 digits."""
        with pytest.raises(LeadValidationError):
            store.create(lead_params(phone="12-34"))

    def test_duplicate_phone_rejected(self, store):
        """A second lead with the same normalized phone is rejected."""
        first = store.create(lead_params(phone="+1 (555) 123-4567"))

        with pytest.raises(DuplicateLeadError) as exc_info:
            store.create(lead_params(phone="+15551234567", first_name="Other"))

        assert exc_info.value.existing_id == first.id

    def test_phone_is_normalized(self, store):
        """Lookups by a differently formatted phone find the lead."""
        lead = store.create(lead_params(phone="1-555-123-4567"))

        assert lead.phone == "+15551234567"
        assert store.get_by_phone("1 555 123 4567").id == lead.id


class TestUpdate:
    """Tests for partial updates."""

    def test_update_stamps_updated_at(self, store):
        """Every update moves updated_at forward."""
        lead = store.create(lead_params())

        updated = store.update(lead.id, {"next_contact_at": FIXED_NOW})

        assert updated.next_contact_at == FIXED_NOW
        assert updated.updated_at >= lead.updated_at
        assert store.get_by_id(lead.id).next_contact_at == FIXED_NOW

    def test_update_ignores_identity_fields(self, store):
        """id and created_at cannot be changed through update."""
        lead = store.create(lead_params())

        updated = store.update(lead.id, {"id": "other", "created_at": FIXED_NOW})

        assert updated.id == lead.id
        assert updated.created_at == lead.created_at

    def test_update_unknown_lead(self, store):
        """Updating a missing lead returns None."""
        assert store.update("missing", {"first_name": "X"}) is None

    def test_add_contact_attempt_sets_last_contact(self, store):
        """Outbound attempts move last_contact_at."""
        lead = store.create(lead_params())

        updated = store.add_contact_attempt(lead.id, outbound_attempt(lead.id))

        assert len(updated.contact_attempts) == 1
        assert updated.last_contact_at == FIXED_NOW

    def test_delete(self, store):
        """Deleted leads are gone, phone included."""
        lead = store.create(lead_params())

        assert store.delete(lead.id)
        assert store.get_by_id(lead.id) is None
        assert store.get_by_phone(lead.phone) is None
        assert not store.delete(lead.id)


class TestQueries:
    """Tests for derived queries."""

    def test_ready_for_contact(self, store):
        """Consent-verified leads with no next contact time are ready."""
        ready = store.create(lead_params())
        store.create(lead_params(phone="+15550000002", consent_verified=False))

        result = store.get_ready_for_contact(FIXED_NOW)

        assert [lead.id for lead in result] == [ready.id]

    def test_future_next_contact_excluded(self, store):
        """Leads scheduled in the future are not due."""
        lead = store.create(lead_params())
        store.update(lead.id, {"next_contact_at": FIXED_NOW + timedelta(hours=1)})

        assert store.get_ready_for_contact(FIXED_NOW) == []
        assert len(store.get_ready_for_contact(FIXED_NOW + timedelta(hours=2))) == 1

    def test_attempt_cap_excludes_from_ready(self, store):
        """A lead at its attempt cap is exhausted, not ready."""
        lead = store.create(lead_params(max_contact_attempts=2))
        store.update(lead.id, {"state": LeadState.AWAITING_RESPONSE})
        store.add_contact_attempt(lead.id, outbound_attempt(lead.id))
        store.add_contact_attempt(lead.id, outbound_attempt(lead.id, ContactStatus.FAILED))

        assert store.get_ready_for_contact(FIXED_NOW) == []
        assert [l.id for l in store.get_contact_exhausted(FIXED_NOW)] == [lead.id]

    def test_inbound_attempts_do_not_count(self, store):
        """Only outbound attempts count against the cap."""
        lead = store.create(lead_params(max_contact_attempts=1))
        store.add_contact_attempt(lead.id, ContactAttempt(
            lead_id=lead.id,
            channel=ContactChannel.SMS,
            direction=ContactDirection.INBOUND,
            timestamp=FIXED_NOW,
            message="hi",
            status=ContactStatus.RESPONDED,
        ))

        assert len(store.get_ready_for_contact(FIXED_NOW)) == 1

    def test_get_by_state_and_stats(self, store):
        """Stats count leads per state."""
        store.create(lead_params())
        opted = store.create(lead_params(phone="+15550000002"))
        store.update(opted.id, {"state": LeadState.OPTED_OUT})
        confirmed = store.create(lead_params(phone="+15550000003"))
        store.update(confirmed.id, {"state": LeadState.APPOINTMENT_CONFIRMED})

        stats = store.get_stats()

        assert stats["total"] == 3
        assert stats["opted_out"] == 1
        assert stats["appointments_scheduled"] == 1
        assert stats["by_state"]["consent_verified"] == 1
        assert store.count_by_state(LeadState.OPTED_OUT) == 1
        assert [l.id for l in store.get_with_confirmed_appointments()] == [confirmed.id]


class TestRepositorySelection:
    """Tests for create_lead_repository."""

    def test_no_url_is_in_memory(self):
        """No database URL keeps leads in memory."""
        assert isinstance(create_lead_repository(None), InMemoryLeadRepository)

    def test_url_selects_sql(self):
        """A database URL selects the SQL repository."""
        assert isinstance(create_lead_repository("sqlite:///:memory:"), SQLLeadRepository)

    def test_memory_repository_returns_copies(self):
        """Mutating a returned lead does not touch stored state."""
        store = LeadStore(InMemoryLeadRepository())
        lead = store.create(lead_params())

        fetched = store.get_by_id(lead.id)
        fetched.state = LeadState.OPTED_OUT

        assert store.get_by_id(lead.id).state == LeadState.CONSENT_VERIFIED
