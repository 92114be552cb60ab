"""Public-schema models (shared across all tenants)."""

from app.models.public.tenant import Tenant
from app.models.public.user import User, UserRole

__all__ = ["Tenant", "User", "UserRole"]
