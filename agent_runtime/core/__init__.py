"""Core: settings and composition root"""
from .config import Settings, RetryPolicy, load_settings
