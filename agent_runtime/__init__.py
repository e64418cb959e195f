"""
Lead Agent Runtime
Headless SMS appointment-setting runtime for sales leads.
"""
__version__ = "1.0.0"
