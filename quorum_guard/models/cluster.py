"""Cluster Model — members as reported by the cluster directory and their health."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ClusterMember(BaseModel):
    """A single node enumerated from the cluster directory."""

    name: str                               # Node name; identity of the member


class MemberHealth(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"     # Health query failed; never counted as online


class QuorumAssessment(BaseModel):
    """Snapshot of cluster reachability taken once per reconciliation pass."""

    model_config = ConfigDict(frozen=True)

    total_members: int = Field(ge=0)
    online_count: int = Field(ge=0)
    unknown_count: int = Field(ge=0, default=0)
