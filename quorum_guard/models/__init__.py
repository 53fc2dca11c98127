"""Quorum guard data models."""

from quorum_guard.models.audit import AuditRecord, AuditSeverity
from quorum_guard.models.cluster import ClusterMember, MemberHealth, QuorumAssessment
from quorum_guard.models.config import DEFAULT_ONLINE_THRESHOLD, GuardConfig
from quorum_guard.models.policy import (
    PolicyDecision,
    PolicyStep,
    ReconciliationOutcome,
    StepResult,
)

__all__ = [
    "AuditRecord",
    "AuditSeverity",
    "ClusterMember",
    "DEFAULT_ONLINE_THRESHOLD",
    "GuardConfig",
    "MemberHealth",
    "PolicyDecision",
    "PolicyStep",
    "QuorumAssessment",
    "ReconciliationOutcome",
    "StepResult",
]
