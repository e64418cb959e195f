"""Concrete collaborators: SMS, calendar, language and lead storage"""
