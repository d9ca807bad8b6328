"""
Saga record for the two-phase plan upgrade.
"""
import enum

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from marketplace_billing.db.base import Base
from marketplace_billing.db.models.user import generate_id


class UpgradePhase(str, enum.Enum):
    """Last phase the attempt reached."""
    CREATING = "creating"          # Phase 1 running
    CREATED = "created"            # Phase 1 done, old subscription still billing
    CANCELLING = "cancelling"      # Phase 2 running
    COMPLETED = "completed"        # Phase 2 done


class UpgradeOutcome(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"                    # Phase 1 failed, nothing to undo
    PARTIAL_FAILURE = "partial_failure"  # Phase 2 failed, two subscriptions billing


class UpgradeAttempt(Base):
    """
    UpgradeAttempt model.

    One row per plan change so an operator can query partial failures instead
    of reconstructing them from logs.
    """
    __tablename__ = "upgrade_attempts"

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    target_plan_id = Column(String(32), nullable=False)
    old_subscription_id = Column(String(32), nullable=True)
    new_subscription_id = Column(String(32), nullable=True)

    phase = Column(String, nullable=False, default=UpgradePhase.CREATING.value)
    outcome = Column(String, nullable=False, default=UpgradeOutcome.IN_PROGRESS.value, index=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_upgrade_user_outcome", "user_id", "outcome"),
    )

    def __repr__(self):
        return f"<UpgradeAttempt(id={self.id}, phase='{self.phase}', outcome='{self.outcome}')>"
