"""
SMS Template Manager
Outbound message templates for the appointment-setting conversation.
"""
import logging
import math
from string import Formatter
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_COMPANY_NAME = "Solar Solutions"

# GSM-7 single and concatenated segment sizes
SEGMENT_LENGTH = 160
MULTIPART_SEGMENT_LENGTH = 153


class SMSTemplateType(str, Enum):
    """Outbound message kinds, one per conversation step."""
    INITIAL_CONTACT = "initial_contact"
    FOLLOW_UP = "follow_up"
    APPOINTMENT_PROPOSAL = "appointment_proposal"
    APPOINTMENT_CONFIRMATION = "appointment_confirmation"
    APPOINTMENT_REMINDER = "appointment_reminder"
    THANK_YOU = "thank_you"
    OPT_OUT_CONFIRMATION = "opt_out_confirmation"
    NOT_INTERESTED = "not_interested"


def segment_count(text: str) -> int:
    """Number of SMS segments a carrier bills for this text."""
    if len(text) <= SEGMENT_LENGTH:
        return 1
    return math.ceil(len(text) / MULTIPART_SEGMENT_LENGTH)


@dataclass
class SMSTemplate:
    """A message body with {placeholders} and the variables it needs."""
    name: str
    template_type: SMSTemplateType
    content: str
    description: str
    required_vars: List[str]
    max_length: int = SEGMENT_LENGTH

    def placeholders(self) -> List[str]:
        return [field for _, field, _, _ in Formatter().parse(self.content) if field]

    def render(self, **kwargs) -> str:
        """
        Fill the placeholders from kwargs.

        Extra kwargs are ignored so callers can pass a superset.

        Raises:
            ValueError: If a required variable or placeholder has no value
        """
        needed = set(self.required_vars) | set(self.placeholders())
        missing = sorted(var for var in needed if var not in kwargs)
        if missing:
            raise ValueError(f"Missing required template variables: {missing}")

        rendered = self.content.format(**kwargs)
        if len(rendered) > self.max_length:
            logger.debug(
                "Template %s is %d chars, over its %d limit (%d segments)",
                self.name, len(rendered), self.max_length, segment_count(rendered)
            )
        return rendered


SMS_TEMPLATES: Dict[str, SMSTemplate] = {
    SMSTemplateType.INITIAL_CONTACT.value: SMSTemplate(
        name="Initial Contact",
        template_type=SMSTemplateType.INITIAL_CONTACT,
        content=(
            "Hi {first_name}! This is {company_name}. We noticed you're interested in solar for your home. "
            "Would you like to schedule a free consultation? Reply YES or call us anytime. Reply STOP to opt out."
        ),
        description="First outbound message after consent is verified",
        required_vars=["first_name", "company_name"],
        max_length=320
    ),

    SMSTemplateType.FOLLOW_UP.value: SMSTemplate(
        name="Follow Up",
        template_type=SMSTemplateType.FOLLOW_UP,
        content=(
            "Hi {first_name}, just following up on our solar consultation offer. We have availability this week. "
            "Would you like to learn more? Reply YES or STOP to opt out."
        ),
        description="Scheduled re-contact while awaiting a reply",
        required_vars=["first_name"],
        max_length=320
    ),

    # slot_list is pre-formatted as a numbered list, one slot per line
    SMSTemplateType.APPOINTMENT_PROPOSAL.value: SMSTemplate(
        name="Appointment Proposal",
        template_type=SMSTemplateType.APPOINTMENT_PROPOSAL,
        content=(
            "Hi {first_name}! Great news! Here are our available appointment times:\n{slot_list}\n"
            "Reply with the number of your preferred time, or suggest another time."
        ),
        description="Numbered list of proposed slots",
        required_vars=["first_name", "slot_list"],
        max_length=480
    ),

    SMSTemplateType.APPOINTMENT_CONFIRMATION.value: SMSTemplate(
        name="Appointment Confirmation",
        template_type=SMSTemplateType.APPOINTMENT_CONFIRMATION,
        content=(
            "Hi {first_name}! Your solar consultation is confirmed for {date} at {time}. "
            "We'll send a reminder before your appointment. Reply CHANGE to reschedule or STOP to cancel."
        ),
        description="Sent when a slot is booked",
        required_vars=["first_name", "date", "time"],
        max_length=320
    ),

    SMSTemplateType.APPOINTMENT_REMINDER.value: SMSTemplate(
        name="Appointment Reminder",
        template_type=SMSTemplateType.APPOINTMENT_REMINDER,
        content=(
            "Hi {first_name}, this is a reminder about your solar consultation tomorrow ({date}) at {time}. "
            "Reply CONFIRM to verify or CHANGE to reschedule."
        ),
        description="Sent the day before a confirmed appointment",
        required_vars=["first_name", "date", "time"],
        max_length=320
    ),

    SMSTemplateType.THANK_YOU.value: SMSTemplate(
        name="Thank You",
        template_type=SMSTemplateType.THANK_YOU,
        content=(
            "Thank you {first_name}! We appreciate your time and look forward to helping you go solar. "
            "Questions? Reply anytime."
        ),
        description="Sent after a completed appointment",
        required_vars=["first_name"],
        max_length=320
    ),

    SMSTemplateType.OPT_OUT_CONFIRMATION.value: SMSTemplate(
        name="Opt-Out Confirmation",
        template_type=SMSTemplateType.OPT_OUT_CONFIRMATION,
        content="You've been unsubscribed and will no longer receive messages from us. Thank you.",
        description="The only message sent after an opt-out",
        required_vars=[],
        max_length=160
    ),

    SMSTemplateType.NOT_INTERESTED.value: SMSTemplate(
        name="Not Interested",
        template_type=SMSTemplateType.NOT_INTERESTED,
        content=(
            "Thanks for letting us know, {first_name}. If you change your mind about solar in the future, "
            "feel free to reach out. Take care!"
        ),
        description="Polite decline acknowledgement",
        required_vars=["first_name"],
        max_length=320
    ),
}


def format_numbered_list(items: Sequence[str]) -> str:
    """'1. first\\n2. second' style list used in proposals."""
    return "\n".join(f"{index}. {item}" for index, item in enumerate(items, start=1))


class SMSTemplateManager:
    """
    Renders the outbound message for each conversation step.

    Custom templates replace the built-in one registered under the same
    template type value.
    """

    def __init__(
        self,
        company_name: str = DEFAULT_COMPANY_NAME,
        custom_templates: Optional[Dict[str, SMSTemplate]] = None
    ):
        self.company_name = company_name
        self._templates: Dict[str, SMSTemplate] = dict(SMS_TEMPLATES)
        self._templates.update(custom_templates or {})

    def get_template(self, template_type) -> SMSTemplate:
        """Look up a template by SMSTemplateType or its string value."""
        key = getattr(template_type, "value", template_type)
        try:
            return self._templates[key]
        except KeyError:
            raise ValueError(
                f"Unknown SMS template: {key}. Known: {sorted(self._templates)}"
            ) from None

    def render_template(self, template_type, **kwargs) -> str:
        return self.get_template(template_type).render(**kwargs)

    def list_templates(self) -> List[str]:
        return sorted(self._templates)

    def get_template_info(self, template_type) -> Dict[str, object]:
        """Metadata for operators choosing or overriding a template."""
        template = self.get_template(template_type)
        return {
            "name": template.name,
            "type": template.template_type.value,
            "description": template.description,
            "variables": sorted(set(template.required_vars) | set(template.placeholders())),
            "max_length": template.max_length,
            "segments": segment_count(template.content),
        }

    def render_initial_contact(self, first_name: str) -> str:
        return self.render_template(
            SMSTemplateType.INITIAL_CONTACT, first_name=first_name, company_name=self.company_name
        )

    def render_follow_up(self, first_name: str, attempt_number: int = 1) -> str:
        return self.render_template(
            SMSTemplateType.FOLLOW_UP, first_name=first_name, attempt_number=attempt_number
        )

    def render_appointment_proposal(self, first_name: str, slot_descriptions: Sequence[str]) -> str:
        return self.render_template(
            SMSTemplateType.APPOINTMENT_PROPOSAL,
            first_name=first_name,
            slot_list=format_numbered_list(slot_descriptions)
        )

    def render_appointment_confirmation(self, first_name: str, date: str, time: str) -> str:
        return self.render_template(
            SMSTemplateType.APPOINTMENT_CONFIRMATION, first_name=first_name, date=date, time=time
        )

    def render_appointment_reminder(self, first_name: str, date: str, time: str) -> str:
        return self.render_template(
            SMSTemplateType.APPOINTMENT_REMINDER, first_name=first_name, date=date, time=time
        )

    def render_thank_you(self, first_name: str) -> str:
        return self.render_template(SMSTemplateType.THANK_YOU, first_name=first_name)

    def render_opt_out_confirmation(self) -> str:
        return self.render_template(SMSTemplateType.OPT_OUT_CONFIRMATION)

    def render_not_interested(self, first_name: str) -> str:
        return self.render_template(SMSTemplateType.NOT_INTERESTED, first_name=first_name)
