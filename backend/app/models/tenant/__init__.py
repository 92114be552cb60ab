"""Tenant-schema models (duplicated into every tenant_xxx schema).

These models use TenantBase, so their tables are created per-tenant
and never in the public schema.
"""

# ── Billing (read-only for field collection) ─────────────────
from app.models.tenant.service_package import ServicePackage
from app.models.tenant.client import Client
from app.models.tenant.invoice import Invoice

# ── Field collection ─────────────────────────────────────────
from app.models.tenant.payment import Payment
from app.models.tenant.collector_assignment import CollectorAssignment
from app.models.tenant.deposit_batch import DepositBatch

# ── Audit / reconciliation ───────────────────────────────────
from app.models.tenant.activity_log import ActivityLog
from app.models.tenant.reconciliation_alert import ReconciliationAlert

__all__ = [
    # Billing
    "ServicePackage", "Client", "Invoice",
    # Field collection
    "Payment", "CollectorAssignment", "DepositBatch",
    # Audit / reconciliation
    "ActivityLog", "ReconciliationAlert",
]
