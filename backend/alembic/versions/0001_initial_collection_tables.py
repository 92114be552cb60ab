"""Initial schema — tenants and users (public), collection and settlement (tenant).

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Run with:
    # Public schema first (tenants, users):
    alembic upgrade head

    # Tenant schema (all tables below):
    alembic -x schema=tenant -x tenant_schema=tenant_XXXXX upgrade head

    # Or for all tenants at once:
    python -m app.cli migrate-tenants
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import context, op
import sqlalchemy as sa


def _is_tenant() -> bool:
    return context.get_x_argument(as_dictionary=True).get("schema") == "tenant"


def upgrade() -> None:
    if _is_tenant():
        _upgrade_tenant()
    else:
        _upgrade_public()


def downgrade() -> None:
    if _is_tenant():
        for table in (
            "reconciliation_alerts", "activity_logs", "collector_assignments",
            "payments", "deposit_batches", "invoices", "clients", "service_packages",
        ):
            op.drop_table(table)
    else:
        op.drop_table("users")
        op.drop_table("tenants")
        sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)


# ── Public ───────────────────────────────────────────────────

def _upgrade_public() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("tenant_schema", sa.String(50), nullable=False, unique=True),
        sa.Column("currency", sa.String(3), server_default="IDR"),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_tenants_tenant_schema", "tenants", ["tenant_schema"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), unique=True),
        sa.Column(
            "role",
            sa.Enum("ADMINISTRATOR", "FINANCE", "COLLECTOR", name="userrole"),
            server_default="COLLECTOR",
        ),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id")),
        sa.Column("custom_permissions", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_phone", "users", ["phone"])


# ── Tenant ───────────────────────────────────────────────────

def _upgrade_tenant() -> None:
    op.create_table(
        "service_packages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("pricing_model", sa.String(20), server_default="flat"),
        sa.Column("price_monthly", sa.Numeric(14, 2), server_default="0"),
        sa.Column("price_per_device", sa.Numeric(14, 2), server_default="0"),
        sa.Column("currency", sa.String(3), server_default="IDR"),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(100)),
        sa.Column("address", sa.Text()),
        sa.Column("service_package_id", sa.String(36), sa.ForeignKey("service_packages.id")),
        sa.Column("device_count", sa.Integer(), server_default="1"),
        sa.Column("discount_type", sa.String(10)),
        sa.Column("discount_value", sa.Numeric(14, 2)),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_number", sa.String(50), nullable=False, unique=True),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(14, 2), server_default="0"),
        sa.Column("due_date", sa.Date()),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"])
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    op.create_table(
        "deposit_batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("deposit_ref", sa.String(50), nullable=False, unique=True),
        sa.Column("collector_id", sa.String(36), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("client_ids", sa.JSON(), server_default="[]"),
        sa.Column("payment_ids", sa.JSON(), server_default="[]"),
        sa.Column("proof_url", sa.String(500), nullable=False),
        sa.Column("proof_content_type", sa.String(100), nullable=False),
        sa.Column("proof_size", sa.Integer(), nullable=False),
        sa.Column("proof_filename", sa.String(255)),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("notes", sa.Text()),
        sa.Column("submitted_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("confirmed", sa.Boolean(), server_default="false"),
        sa.Column("confirmed_at", sa.DateTime()),
        sa.Column("confirmed_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_deposit_batches_deposit_ref", "deposit_batches", ["deposit_ref"])
    op.create_index("ix_deposit_batches_collector_id", "deposit_batches", ["collector_id"])
    op.create_index("ix_deposit_batches_work_date", "deposit_batches", ["work_date"])
    op.create_index("ix_deposit_batches_confirmed", "deposit_batches", ["confirmed"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("payment_ref", sa.String(50), nullable=False, unique=True),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("method", sa.String(30), server_default="cash"),
        sa.Column("collector_id", sa.String(36)),
        sa.Column("collection_type", sa.String(10)),
        sa.Column("due_snapshot", sa.Numeric(14, 2)),
        sa.Column("received_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("deposit_batch_id", sa.String(36), sa.ForeignKey("deposit_batches.id")),
        sa.Column("applied_at", sa.DateTime()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_payments_payment_ref", "payments", ["payment_ref"])
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"])
    op.create_index("ix_payments_client_id", "payments", ["client_id"])
    op.create_index("ix_payments_collector_id", "payments", ["collector_id"])
    op.create_index("ix_payments_received_at", "payments", ["received_at"])
    op.create_index("ix_payments_deposit_batch_id", "payments", ["deposit_batch_id"])

    op.create_table(
        "collector_assignments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("collector_id", sa.String(36), nullable=False),
        sa.Column("workflow_status", sa.String(20), nullable=False, server_default="assigned"),
        sa.Column("visit_notes", sa.Text()),
        sa.Column("visit_photo_url", sa.String(500)),
        sa.Column("failure_reason", sa.String(100)),
        sa.Column("visited_at", sa.DateTime()),
        sa.Column("deposit_batch_id", sa.String(36), sa.ForeignKey("deposit_batches.id")),
        sa.Column("deposit_proof_url", sa.String(500)),
        sa.Column("deposit_submitted_at", sa.DateTime()),
        sa.Column("confirmed_at", sa.DateTime()),
        sa.Column("assigned_by", sa.String(36)),
        sa.Column("assigned_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_collector_assignments_invoice_id", "collector_assignments", ["invoice_id"])
    op.create_index("ix_collector_assignments_client_id", "collector_assignments", ["client_id"])
    op.create_index("ix_collector_assignments_collector_id", "collector_assignments", ["collector_id"])
    op.create_index("ix_collector_assignments_workflow_status", "collector_assignments", ["workflow_status"])
    op.create_index("ix_collector_assignments_deposit_batch_id", "collector_assignments", ["deposit_batch_id"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("user_name", sa.String(200), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])

    op.create_table(
        "reconciliation_alerts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("expected_value", sa.Numeric(14, 2)),
        sa.Column("actual_value", sa.Numeric(14, 2)),
        sa.Column("variance", sa.Numeric(14, 2)),
        sa.Column("variance_pct", sa.Float()),
        sa.Column("unit", sa.String(20)),
        sa.Column("entity_refs", sa.JSON()),
        sa.Column("collector_id", sa.String(36)),
        sa.Column("deposit_batch_id", sa.String(36), sa.ForeignKey("deposit_batches.id")),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id")),
        sa.Column("period_start", sa.DateTime()),
        sa.Column("period_end", sa.DateTime()),
        sa.Column("status", sa.String(20), server_default="open"),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("resolved_by", sa.String(36)),
        sa.Column("resolution_note", sa.Text()),
        sa.Column("run_id", sa.String(36)),
        sa.Column("is_deleted", sa.Boolean(), server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_reconciliation_alerts_alert_type", "reconciliation_alerts", ["alert_type"])
    op.create_index("ix_reconciliation_alerts_severity", "reconciliation_alerts", ["severity"])
    op.create_index("ix_reconciliation_alerts_status", "reconciliation_alerts", ["status"])
    op.create_index("ix_reconciliation_alerts_run_id", "reconciliation_alerts", ["run_id"])
    op.create_index("ix_reconciliation_alerts_collector_id", "reconciliation_alerts", ["collector_id"])
    op.create_index(
        "ix_reconciliation_alerts_deposit_batch_id", "reconciliation_alerts", ["deposit_batch_id"]
    )
    op.create_index("ix_reconciliation_alerts_invoice_id", "reconciliation_alerts", ["invoice_id"])
