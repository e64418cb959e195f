"""
Unit Tests for SMS Template Manager
"""
import pytest

from agent_runtime.domain.services.sms_template_manager import (
    SMSTemplate,
    SMSTemplateManager,
    SMSTemplateType,
    format_numbered_list,
    segment_count,
)


class TestSMSTemplateManager:
    """Tests for SMSTemplateManager."""

    def test_get_template_returns_template(self):
        """Test getting a template by name."""
        manager = SMSTemplateManager()
        template = manager.get_template(SMSTemplateType.INITIAL_CONTACT.value)

        assert template.name == "Initial Contact"
        assert "first_name" in template.required_vars

    def test_get_template_accepts_enum(self):
        """Template types can be passed directly."""
        manager = SMSTemplateManager()
        assert manager.get_template(SMSTemplateType.FOLLOW_UP).name == "Follow Up"

    def test_get_template_raises_for_unknown(self):
        """Test that getting unknown template raises ValueError."""
        manager = SMSTemplateManager()

        with pytest.raises(ValueError, match="Unknown SMS template"):
            manager.get_template("nonexistent_template")

    def test_render_missing_variable_raises(self):
        """Required variables must be supplied."""
        manager = SMSTemplateManager()

        with pytest.raises(ValueError, match="Missing required template variables"):
            manager.render_template(SMSTemplateType.APPOINTMENT_CONFIRMATION, first_name="Ann")

    def test_render_initial_contact_uses_company_name(self):
        """Initial contact names the sender and offers opt-out."""
        manager = SMSTemplateManager(company_name="Bright Roofs")
        result = manager.render_initial_contact("Ann")

        assert "Hi Ann!" in result
        assert "Bright Roofs" in result
        assert "STOP" in result

    def test_render_appointment_proposal_numbered(self):
        """Proposals list slots as a numbered list."""
        manager = SMSTemplateManager()
        result = manager.render_appointment_proposal(
            "Ann", ["Mon, Jan 5 at 09:00", "Mon, Jan 5 at 10:15", "Tue, Jan 6 at 09:00"]
        )

        assert "1. Mon, Jan 5 at 09:00" in result
        assert "2. Mon, Jan 5 at 10:15" in result
        assert "3. Tue, Jan 6 at 09:00" in result

    def test_render_appointment_confirmation(self):
        """Confirmation carries date and time."""
        manager = SMSTemplateManager()
        result = manager.render_appointment_confirmation("Ann", "Mon, Jan 5", "09:00")

        assert "Mon, Jan 5" in result
        assert "09:00" in result

    def test_render_opt_out_confirmation_has_no_variables(self):
        """Opt-out confirmation renders without variables."""
        manager = SMSTemplateManager()
        assert "unsubscribed" in manager.render_opt_out_confirmation()

    def test_custom_template_overrides_default(self):
        """Custom templates replace defaults with the same key."""
        custom = SMSTemplate(
            name="Short Follow Up",
            template_type=SMSTemplateType.FOLLOW_UP,
            content="{first_name}, still interested?",
            description="Shorter follow-up",
            required_vars=["first_name"],
        )
        manager = SMSTemplateManager(custom_templates={SMSTemplateType.FOLLOW_UP.value: custom})

        assert manager.render_follow_up("Ann", attempt_number=2) == "Ann, still interested?"

    def test_placeholder_without_required_var_still_checked(self):
        """Placeholders in the text are required even when not declared."""
        custom = SMSTemplate(
            name="Loose",
            template_type=SMSTemplateType.THANK_YOU,
            content="Thanks {first_name}, see you {date}",
            description="Undeclared placeholder",
            required_vars=["first_name"],
        )

        with pytest.raises(ValueError, match="date"):
            custom.render(first_name="Ann")

    def test_every_type_has_a_template(self):
        """Each template type resolves to a built-in template."""
        manager = SMSTemplateManager()

        for template_type in SMSTemplateType:
            assert manager.get_template(template_type).template_type == template_type

    def test_list_templates(self):
        """Every built-in template is listed."""
        names = SMSTemplateManager().list_templates()

        assert set(names) == {t.value for t in SMSTemplateType}

    def test_get_template_info(self):
        """Info reports the variables the text needs."""
        info = SMSTemplateManager().get_template_info(SMSTemplateType.APPOINTMENT_CONFIRMATION)

        assert info["type"] == "appointment_confirmation"
        assert info["variables"] == ["date", "first_name", "time"]
        assert info["segments"] == 2


class TestFormatNumberedList:
    """Tests for format_numbered_list."""

    def test_numbering_starts_at_one(self):
        """Items are numbered from 1, one per line."""
        assert format_numbered_list(["a", "b"]) == "1. a\n2. b"

    def test_empty(self):
        """An empty list renders as an empty string."""
        assert format_numbered_list([]) == ""


class TestSegmentCount:
    """Tests for segment_count."""

    def test_single_segment(self):
        assert segment_count("x" * 160) == 1

    def test_multipart(self):
        """Concatenated messages use 153-char segments."""
        assert segment_count("x" * 161) == 2
        assert segment_count("x" * 307) == 3
