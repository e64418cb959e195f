"""SMS providers"""
from .mock import MockSMSProvider
from .vonage import VonageSMSProvider
from .factory import SMSProviderFactory, select_sms_provider
