"""Aggregate model imports for Alembic auto-detection."""

# Public schema
from app.models.public.tenant import Tenant  # noqa: F401
from app.models.public.user import User, UserRole  # noqa: F401

# Tenant schema — billing
from app.models.tenant.service_package import ServicePackage  # noqa: F401
from app.models.tenant.client import Client  # noqa: F401
from app.models.tenant.invoice import Invoice  # noqa: F401

# Tenant schema — field collection
from app.models.tenant.payment import Payment  # noqa: F401
from app.models.tenant.collector_assignment import CollectorAssignment  # noqa: F401
from app.models.tenant.deposit_batch import DepositBatch  # noqa: F401

# Tenant schema — audit / reconciliation
from app.models.tenant.activity_log import ActivityLog  # noqa: F401
from app.models.tenant.reconciliation_alert import ReconciliationAlert  # noqa: F401
