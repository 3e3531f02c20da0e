"""Inbound third-party webhooks."""
