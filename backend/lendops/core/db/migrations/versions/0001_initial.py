import sqlalchemy as sa
from alembic import op

revision = "0001_initial"
down_revision = None

MONEY = sa.Numeric(15, 2)


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
    ]


def _snapshot_table(name: str, *columns: sa.Column) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        *columns,
    )
    op.create_index(f"ix_{name}_snapshot_date", name, ["snapshot_date"], unique=True)


def upgrade():
    # --- Event log
    op.create_table(
        "domain_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("event_version", sa.String(length=16), nullable=False),
        sa.Column("aggregate_id", sa.String(length=64), nullable=False),
        sa.Column("aggregate_type", sa.String(length=64), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("causation_id", sa.String(length=64), nullable=True),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processing_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.UniqueConstraint("aggregate_type", "aggregate_id", "sequence_number", name="uq_domain_events_aggregate_seq"),
    )
    op.create_index("ix_domain_events_aggregate", "domain_events", ["aggregate_type", "aggregate_id", "sequence_number"])
    op.create_index("ix_domain_events_occurred_at", "domain_events", ["occurred_at"])
    op.create_index("ix_domain_events_event_type", "domain_events", ["event_type"])
    op.create_index("ix_domain_events_correlation_id", "domain_events", ["correlation_id"])
    op.create_index("ix_domain_events_processing_status", "domain_events", ["processing_status"])

    op.create_table(
        "event_processing_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_id", sa.Uuid(), sa.ForeignKey("domain_events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("handler_name", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("execution_time_ms", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_event_processing_log_event_id", "event_processing_log", ["event_id"])
    op.create_index("ix_event_processing_log_handler_name", "event_processing_log", ["handler_name"])

    op.create_table(
        "event_dead_letters",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_id", sa.Uuid(), sa.ForeignKey("domain_events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("handler_name", sa.String(length=200), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_event_dead_letters_event_id", "event_dead_letters", ["event_id"])
    op.create_index("ix_event_dead_letters_resolved_at", "event_dead_letters", ["resolved_at"])

    # --- Loans
    op.create_table(
        "loans",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("borrower_name", sa.String(length=255), nullable=True),
        sa.Column("principal", MONEY, nullable=False),
        sa.Column("interest_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("term_months", sa.Integer(), nullable=True),
        sa.Column("collateral_value", MONEY, nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "draft",
                "submitted",
                "verification",
                "underwriting",
                "approved",
                "closing",
                "funded",
                "rejected",
                name="loan_status_enum",
            ),
            nullable=False,
        ),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delinquent_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_audit_columns(),
    )
    op.create_index("ix_loans_organization_id", "loans", ["organization_id"])
    op.create_index("ix_loans_status", "loans", ["status"])

    # --- Funds
    op.create_table(
        "funds",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("fund_type", sa.Enum("private", "syndicated", "institutional", name="fund_type_enum"), nullable=False),
        sa.Column("status", sa.Enum("active", "closed", name="fund_status_enum"), nullable=False),
        sa.Column("total_capacity", MONEY, nullable=False),
        sa.Column("inception_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closing_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("strategy", sa.Text(), nullable=True),
        sa.Column("target_return", sa.Numeric(5, 2), nullable=True),
        sa.Column("management_fee_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("performance_fee_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        *_audit_columns(),
    )
    op.create_index("ix_funds_organization_id", "funds", ["organization_id"])
    op.create_index("ix_funds_status", "funds", ["status"])

    op.create_table(
        "fund_commitments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("fund_id", sa.Uuid(), sa.ForeignKey("funds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lender_id", sa.Uuid(), nullable=False),
        sa.Column("committed_amount", MONEY, nullable=False),
        sa.Column("called_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("distributed_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("status", sa.Enum("active", "cancelled", name="commitment_status_enum"), nullable=False),
        sa.Column("commitment_date", sa.Date(), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_fund_commitments_fund_status", "fund_commitments", ["fund_id", "status"])
    op.create_index("ix_fund_commitments_lender_id", "fund_commitments", ["lender_id"])

    op.create_table(
        "capital_calls",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("fund_id", sa.Uuid(), sa.ForeignKey("funds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("call_number", sa.Integer(), nullable=False),
        sa.Column("call_amount", MONEY, nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "funded", "overdue", name="capital_call_status_enum"),
            nullable=False,
        ),
        sa.Column("received_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("funded_date", sa.Date(), nullable=True),
        sa.Column("purpose", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("fund_id", "call_number", name="uq_capital_calls_fund_call_number"),
    )
    op.create_index("ix_capital_calls_fund_id", "capital_calls", ["fund_id"])

    op.create_table(
        "fund_loan_allocations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("fund_id", sa.Uuid(), sa.ForeignKey("funds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("loan_id", sa.Uuid(), sa.ForeignKey("loans.id"), nullable=False),
        sa.Column("allocated_amount", MONEY, nullable=False),
        sa.Column("returned_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("allocation_date", sa.Date(), nullable=False),
        sa.Column("full_return_date", sa.Date(), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_fund_loan_allocations_fund_id", "fund_loan_allocations", ["fund_id"])
    op.create_index("ix_fund_loan_allocations_loan_id", "fund_loan_allocations", ["loan_id"])

    op.create_table(
        "capital_returns",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "allocation_id",
            sa.Uuid(),
            sa.ForeignKey("fund_loan_allocations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("fund_id", sa.Uuid(), sa.ForeignKey("funds.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("return_date", sa.Date(), nullable=False),
    )
    op.create_index("ix_capital_returns_fund_id", "capital_returns", ["fund_id"])

    op.create_table(
        "fund_distributions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("fund_id", sa.Uuid(), sa.ForeignKey("funds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("distribution_date", sa.Date(), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column(
            "distribution_type",
            sa.Enum("return_of_capital", "profit", "interest", name="distribution_type_enum"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("scheduled", "processed", "cancelled", name="distribution_status_enum"),
            nullable=False,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_fund_distributions_fund_id", "fund_distributions", ["fund_id"])

    op.create_table(
        "distribution_lines",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "distribution_id",
            sa.Uuid(),
            sa.ForeignKey("fund_distributions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("commitment_id", sa.Uuid(), sa.ForeignKey("fund_commitments.id"), nullable=False),
        sa.Column("lender_id", sa.Uuid(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
    )
    op.create_index("ix_distribution_lines_distribution_id", "distribution_lines", ["distribution_id"])

    # --- Payments / inspections
    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("loan_id", sa.Uuid(), sa.ForeignKey("loans.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("received_date", sa.Date(), nullable=True),
        sa.Column("status", sa.Enum("pending", "completed", "failed", name="payment_status_enum"), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("late_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_event_id", sa.Uuid(), nullable=True),
        sa.Column("installment_number", sa.Integer(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("source_event_id", "installment_number", name="uq_payments_source_event_installment"),
    )
    op.create_index("ix_payments_loan_id", "payments", ["loan_id"])
    op.create_index("ix_payments_status_due", "payments", ["status", "due_date"])

    op.create_table(
        "inspections",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("loan_id", sa.Uuid(), sa.ForeignKey("loans.id"), nullable=False),
        sa.Column("draw_id", sa.String(length=64), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("completed_date", sa.Date(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("scheduled", "completed", "overdue", name="inspection_status_enum"),
            nullable=False,
        ),
        sa.Column("findings", sa.Text(), nullable=True),
        sa.Column("due_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("overdue_notified_at", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_inspections_loan_id", "inspections", ["loan_id"])
    op.create_index("ix_inspections_status_scheduled", "inspections", ["status", "scheduled_date"])

    # --- Alerts
    op.create_table(
        "alerts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.String(length=64), nullable=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("severity", sa.Enum("info", "warning", "critical", name="alert_severity_enum"), nullable=False),
        sa.Column("status", sa.Enum("unread", "read", "archived", name="alert_status_enum"), nullable=False),
        sa.Column("source_event_id", sa.Uuid(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("source_event_id", name="uq_alerts_source_event_id"),
    )
    op.create_index("ix_alerts_entity", "alerts", ["entity_type", "entity_id"])
    op.create_index("ix_alerts_status", "alerts", ["status"])
    op.create_index("ix_alerts_severity", "alerts", ["severity"])
    op.create_index("ix_alerts_organization_id", "alerts", ["organization_id"])

    # --- Snapshots
    _snapshot_table(
        "loan_snapshots",
        sa.Column("active_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pipeline_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delinquent_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejected_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_principal", MONEY, nullable=False, server_default="0"),
        sa.Column("avg_ltv", sa.Numeric(6, 3), nullable=True),
    )
    _snapshot_table(
        "fund_snapshots",
        sa.Column("active_fund_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_commitments", MONEY, nullable=False, server_default="0"),
        sa.Column("capital_received", MONEY, nullable=False, server_default="0"),
        sa.Column("capital_deployed", MONEY, nullable=False, server_default="0"),
        sa.Column("capital_returned", MONEY, nullable=False, server_default="0"),
        sa.Column("capital_distributed", MONEY, nullable=False, server_default="0"),
        sa.Column("available_capital", MONEY, nullable=False, server_default="0"),
        sa.Column("deployment_rate", sa.Numeric(7, 4), nullable=False, server_default="0"),
    )
    _snapshot_table(
        "payment_snapshots",
        sa.Column("amount_received", MONEY, nullable=False, server_default="0"),
        sa.Column("amount_scheduled", MONEY, nullable=False, server_default="0"),
        sa.Column("late_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_collection_days", sa.Numeric(6, 2), nullable=True),
    )
    _snapshot_table(
        "inspection_snapshots",
        sa.Column("scheduled_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("overdue_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_completion_days", sa.Numeric(6, 2), nullable=True),
    )


def downgrade():
    for table in (
        "inspection_snapshots",
        "payment_snapshots",
        "fund_snapshots",
        "loan_snapshots",
        "alerts",
        "inspections",
        "payments",
        "distribution_lines",
        "fund_distributions",
        "capital_returns",
        "fund_loan_allocations",
        "capital_calls",
        "fund_commitments",
        "funds",
        "loans",
        "event_dead_letters",
        "event_processing_log",
        "domain_events",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in (
            "inspection_status_enum",
            "payment_status_enum",
            "alert_status_enum",
            "alert_severity_enum",
            "distribution_status_enum",
            "distribution_type_enum",
            "capital_call_status_enum",
            "commitment_status_enum",
            "fund_status_enum",
            "fund_type_enum",
            "loan_status_enum",
        ):
            sa.Enum(name=enum_name).drop(bind, checkfirst=True)
