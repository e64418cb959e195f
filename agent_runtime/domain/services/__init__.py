"""Deterministic domain services: lifecycle rules, quiet hours and message templates"""
from .lead_state_machine import (
    LeadTrigger,
    LeadTransition,
    LeadStateMachine,
    TRANSITIONS,
    TERMINAL_STATES,
    CONTACT_BLOCKED_STATES,
)
from .quiet_hours import QuietHours, is_quiet_hours
from .sms_template_manager import (
    DEFAULT_COMPANY_NAME,
    SMSTemplateType,
    SMSTemplate,
    SMSTemplateManager,
    format_numbered_list,
)
