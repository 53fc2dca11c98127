"""Policy Decision — the reconciled maintenance policy and the steps that apply it."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from quorum_guard.models.cluster import QuorumAssessment


class PolicyDecision(str, Enum):
    RESTRICT_MAINTENANCE = "restrict_maintenance"
    ALLOW_MAINTENANCE = "allow_maintenance"


class PolicyStep(str, Enum):
    SET_PERMISSION_FLAG = "set_permission_flag"
    STOP_MAINTENANCE_SERVICE = "stop_maintenance_service"
    START_MAINTENANCE_SERVICE = "start_maintenance_service"
    TRIGGER_RESCAN = "trigger_rescan"


class StepResult(BaseModel):
    """Outcome of a single applier step."""

    step: PolicyStep
    success: Optional[bool] = None          # None when the step was only simulated
    detail: str = ""


class ReconciliationOutcome(BaseModel):
    """Everything one reconciliation pass decided and did."""

    decision: PolicyDecision
    simulated: bool
    assessment: QuorumAssessment
    step_results: List[StepResult] = []
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))  # when the pass began

    @property
    def failed_steps(self) -> List[StepResult]:
        """Steps that were attempted and failed."""
        return [r for r in self.step_results if r.success is False]
