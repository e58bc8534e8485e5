"""
SQLAlchemy ORM Models.

Maps orchestration records (executions, activity invocations and
compensation records) to database tables. Domain entities of the platform
services are not stored here.
"""
from sqlalchemy import (
    Column, String, DateTime, Integer, Text, Boolean, Index, ForeignKey, UniqueConstraint, JSON
)
from sqlalchemy.orm import declarative_base

from tenantflow_sdk.utils.datetime import utc_now


Base = declarative_base()


# =============================================================================
# EXECUTION MODEL
# =============================================================================

class ExecutionModel(Base):
    """
    Workflow execution state.

    One row per execution; the id is derived from (tenant, idempotency key),
    so the primary key doubles as the at-most-one-in-flight guard.
    """

    __tablename__ = "workflow_executions"

    execution_id = Column(String(36), primary_key=True)
    tenant_id = Column(String(255), nullable=False, index=True)
    actor_id = Column(String(255), nullable=False)
    operation_type = Column(String(100), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    # Progress
    status = Column(String(20), nullable=False, default="pending", index=True)
    step_cursor = Column(Integer, nullable=False, default=0)
    step_outputs = Column(JSON, nullable=False, default=list)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    failed_step = Column(Integer, nullable=True)
    compensation_status = Column(String(20), nullable=True)
    compensation_error = Column(Text, nullable=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)

    # Task distribution
    queued = Column(Boolean, nullable=False, default=False)
    queued_at = Column(DateTime(timezone=True), nullable=True)
    lease_owner = Column(String(255), nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    started_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_executions_tenant_key"),
        Index("ix_executions_queue", "queued", "queued_at"),
        Index("ix_executions_tenant_status", "tenant_id", "status"),
    )

    def __repr__(self):
        return f"<Execution(id={self.execution_id}, type={self.operation_type}, status={self.status})>"


# =============================================================================
# ACTIVITY INVOCATION MODEL
# =============================================================================

class ActivityInvocationModel(Base):
    """
    Append-only log of adapter attempts.

    Never updated or deleted.
    """

    __tablename__ = "activity_invocations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(
        String(36), ForeignKey("workflow_executions.execution_id"), nullable=False, index=True
    )
    tenant_id = Column(String(255), nullable=False)
    step_index = Column(Integer, nullable=False)
    adapter_name = Column(String(100), nullable=False)
    input = Column(JSON, nullable=False, default=dict)
    attempt = Column(Integer, nullable=False)
    retry_policy = Column(JSON, nullable=False, default=dict)
    outcome = Column(String(30), nullable=False)
    error = Column(Text, nullable=True)
    is_compensation = Column(Boolean, nullable=False, default=False)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (
            f"<Invocation(execution={self.execution_id}, step={self.step_index}, "
            f"attempt={self.attempt}, outcome={self.outcome})>"
        )


# =============================================================================
# COMPENSATION MODEL
# =============================================================================

class CompensationModel(Base):
    """Rollback bookkeeping, one row per compensated step."""

    __tablename__ = "compensation_records"

    execution_id = Column(
        String(36), ForeignKey("workflow_executions.execution_id"), primary_key=True
    )
    step_index = Column(Integer, primary_key=True)
    tenant_id = Column(String(255), nullable=False)
    adapter_name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self):
        return f"<Compensation(execution={self.execution_id}, step={self.step_index}, status={self.status})>"
