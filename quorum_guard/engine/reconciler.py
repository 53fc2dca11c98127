"""
Quorum Policy Engine — the core of the quorum guard.

One pass: enumerate members → assess health → decide policy → apply (or simulate).

Behavioral Contract:
- Anything that cannot be confirmed online counts as not online
- The decision depends only on the online count against a fixed threshold
- The assessment and decision are audited before any side effect, in both modes
- Every planned step is attempted; a failing step never skips the ones after it
- Nothing below the entry point aborts a pass
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from quorum_guard.applier.windows import PolicyApplier
from quorum_guard.audit.sink import AuditSink
from quorum_guard.directory.client import ClusterDirectoryClient, DirectoryUnavailable
from quorum_guard.models.audit import AuditSeverity
from quorum_guard.models.cluster import ClusterMember, MemberHealth, QuorumAssessment
from quorum_guard.models.config import DEFAULT_ONLINE_THRESHOLD, GuardConfig
from quorum_guard.models.policy import (
    PolicyDecision,
    PolicyStep,
    ReconciliationOutcome,
    StepResult,
)

logger = logging.getLogger(__name__)

STEP_PLANS: Dict[PolicyDecision, List[PolicyStep]] = {
    PolicyDecision.RESTRICT_MAINTENANCE: [
        PolicyStep.SET_PERMISSION_FLAG,
        PolicyStep.STOP_MAINTENANCE_SERVICE,
    ],
    PolicyDecision.ALLOW_MAINTENANCE: [
        PolicyStep.SET_PERMISSION_FLAG,
        PolicyStep.START_MAINTENANCE_SERVICE,
        PolicyStep.TRIGGER_RESCAN,
    ],
}


def decide_policy(
    assessment: QuorumAssessment, threshold: int = DEFAULT_ONLINE_THRESHOLD
) -> PolicyDecision:
    """Allow maintenance only when at least ``threshold`` members are online."""
    if assessment.online_count >= threshold:
        return PolicyDecision.ALLOW_MAINTENANCE
    return PolicyDecision.RESTRICT_MAINTENANCE


class QuorumPolicyEngine:
    """Runs reconciliation passes against a directory, an applier and an audit sink."""

    def __init__(
        self,
        directory: ClusterDirectoryClient,
        applier: Optional[PolicyApplier],
        sink: AuditSink,
        config: Optional[GuardConfig] = None,
        simulate: bool = False,
    ):
        if applier is None and not simulate:
            raise ValueError("A policy applier is required outside dry-run mode")
        self.directory = directory
        self.applier = applier
        self.sink = sink
        self.config = config or GuardConfig()
        self.simulate = simulate

    def reconcile(self) -> ReconciliationOutcome:
        """Enumerate the cluster and evaluate it; enumeration failure restricts."""
        started_at = datetime.now(timezone.utc)
        try:
            members = self.directory.list_members()
        except DirectoryUnavailable as e:
            self.sink.record(str(e), AuditSeverity.ERROR)
            members = []
        except Exception as e:
            logger.debug("Member enumeration raised", exc_info=True)
            self.sink.record(
                f"Unexpected error retrieving cluster nodes: {e}", AuditSeverity.ERROR
            )
            members = []
        return self.evaluate(members, started_at)

    def assess(self, members: Sequence[ClusterMember]) -> QuorumAssessment:
        """Health-check members one at a time. Only ONLINE counts toward quorum."""
        online = 0
        unknown = 0
        for member in members:
            health = self.directory.get_health(member)
            logger.debug("Member %s is %s", member.name, health.value)
            if health == MemberHealth.ONLINE:
                online += 1
            elif health == MemberHealth.UNKNOWN:
                unknown += 1
        return QuorumAssessment(
            total_members=len(members),
            online_count=online,
            unknown_count=unknown,
        )

    def evaluate(
        self,
        members: Sequence[ClusterMember],
        started_at: Optional[datetime] = None,
    ) -> ReconciliationOutcome:
        """Run a single reconciliation pass over an already-enumerated member list."""
        started_at = started_at or datetime.now(timezone.utc)
        if not members:
            self.sink.record(
                "No cluster members could be established. Treating the cluster as having no online nodes.",
                AuditSeverity.WARNING,
            )

        assessment = self.assess(members)
        decision = decide_policy(assessment, self.config.online_threshold)
        self._record_assessment(assessment, decision)

        plan = STEP_PLANS[decision]
        if self.simulate:
            step_results = self._simulate(decision, plan)
        else:
            step_results = [self._dispatch_step(step, decision) for step in plan]

        return ReconciliationOutcome(
            decision=decision,
            simulated=self.simulate,
            assessment=assessment,
            step_results=step_results,
            started_at=started_at,
        )

    def _record_assessment(
        self, assessment: QuorumAssessment, decision: PolicyDecision
    ) -> None:
        threshold = self.config.online_threshold
        self.sink.record(f"Retrieved {assessment.total_members} cluster nodes.")
        self.sink.record(f"{assessment.online_count} nodes are online.")
        if assessment.unknown_count:
            self.sink.record(
                f"{assessment.unknown_count} nodes could not be checked and are treated as offline.",
                AuditSeverity.WARNING,
            )

        if decision == PolicyDecision.RESTRICT_MAINTENANCE:
            self.sink.record(
                f"Fewer than {threshold} nodes are online. Preventing automatic reboots.",
                AuditSeverity.WARNING,
            )
        else:
            self.sink.record(
                f"{threshold} or more nodes are online. Allowing automatic reboots if needed."
            )

    def _simulate(
        self, decision: PolicyDecision, plan: List[PolicyStep]
    ) -> List[StepResult]:
        results = [
            StepResult(step=step, success=None, detail=self._describe(step, decision))
            for step in plan
        ]
        self.sink.record("Dry run: " + "; ".join(r.detail for r in results) + ".")
        return results

    def _describe(self, step: PolicyStep, decision: PolicyDecision) -> str:
        service = self.config.maintenance_service
        if step == PolicyStep.SET_PERMISSION_FLAG:
            if decision == PolicyDecision.ALLOW_MAINTENANCE:
                return "would set the policy flag to allow reboots"
            return "would set the policy flag to prevent reboots"
        if step == PolicyStep.STOP_MAINTENANCE_SERVICE:
            return f"would stop service '{service}'"
        if step == PolicyStep.START_MAINTENANCE_SERVICE:
            return f"would start service '{service}'"
        return "would force update detection"

    def _dispatch_step(self, step: PolicyStep, decision: PolicyDecision) -> StepResult:
        """Run one applier step; any failure becomes a failed StepResult."""
        action = self._step_action(step, decision)
        try:
            detail = action()
        except Exception as e:
            self.sink.record(f"{step.value} failed: {e}", AuditSeverity.ERROR)
            return StepResult(step=step, success=False, detail=str(e))
        return StepResult(step=step, success=True, detail=detail)

    def _step_action(
        self, step: PolicyStep, decision: PolicyDecision
    ) -> Callable[[], str]:
        applier = self.applier
        service = self.config.maintenance_service

        if step == PolicyStep.SET_PERMISSION_FLAG:
            allow = decision == PolicyDecision.ALLOW_MAINTENANCE
            return lambda: applier.set_permission_flag(allow)
        if step == PolicyStep.STOP_MAINTENANCE_SERVICE:
            return lambda: applier.ensure_service_stopped(service)
        if step == PolicyStep.START_MAINTENANCE_SERVICE:
            return lambda: applier.ensure_service_running(service)
        return self._rescan

    def _rescan(self) -> str:
        self.sink.record("Starting update detection...")
        pending = self.applier.trigger_rescan()
        if pending > 0:
            message = f"{pending} pending updates detected."
        else:
            message = "No pending updates detected."
        self.sink.record(message)
        return message
