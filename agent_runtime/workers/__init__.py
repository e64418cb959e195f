"""
Workers Package
Background workers for scheduled lead contact
"""
from agent_runtime.workers.scheduled_contact_runner import ScheduledContactRunner

__all__ = [
    "ScheduledContactRunner"
]
