"""Waitlist entries, positions and referral codes."""
