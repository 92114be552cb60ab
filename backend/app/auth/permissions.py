"""Granular permission system for FieldCash RBAC.

Design:
  - Each role has a set of DEFAULT permissions (defined here, not in DB).
  - Admins can grant/revoke individual permissions per user via
    `User.custom_permissions` (a JSON dict of {perm: True/False} overrides).
  - `resolve_permissions(role, custom_permissions)` computes the effective
    permission set for a given user.
  - The effective set is embedded in the JWT so most checks are token-only
    (no DB roundtrip).

Permission naming: `<resource>.<action>`
  Resources: assignment, collection, deposit, reconciliation
"""

from __future__ import annotations


# ── All known permissions ───────────────────────────────────

ALL_PERMISSIONS: set[str] = {
    # Collector assignments
    "assignment.read",
    "assignment.write",       # create assignments for collectors

    # Field collection (visits, payments)
    "collection.write",

    # Deposits
    "deposit.submit",
    "deposit.read",
    "deposit.confirm",        # finance sign-off, applies payments to invoices

    # Integrity audit
    "reconciliation.read",
    "reconciliation.write",
}


# ── Role → default permissions ──────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    # Confirming deposits is a finance duty; admins get it via override only.
    "administrator": ALL_PERMISSIONS - {"deposit.confirm"},

    "finance": {
        "assignment.read", "assignment.write",
        "deposit.read", "deposit.confirm",
        "reconciliation.read", "reconciliation.write",
    },

    "collector": {
        "assignment.read",
        "collection.write",
        "deposit.submit", "deposit.read",
    },
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> list[str]:
    """Compute effective permissions for a user.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {perm: True} adds, {perm: False} removes.
    3. Return a sorted list (for stable JWT claims).
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_PERMISSIONS:
                continue  # ignore unknown permissions
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return sorted(base)


def has_permission(user_permissions: list[str] | set[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement."""
    return required in user_permissions
