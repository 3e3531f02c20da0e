"""Admin authentication."""

from healthscan.auth.middleware import require_admin

__all__ = ["require_admin"]
