"""Transactional email."""

from healthscan.email.service import EmailService

__all__ = ["EmailService"]
