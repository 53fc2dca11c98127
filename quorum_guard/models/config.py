"""Guard configuration."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_ONLINE_THRESHOLD = 3


class GuardConfig(BaseModel):
    """Configuration for one quorum guard invocation."""

    model_config = ConfigDict(extra="forbid")

    # Absolute floor of online members, not a fraction of the cluster
    online_threshold: int = Field(ge=1, default=DEFAULT_ONLINE_THRESHOLD)
    maintenance_service: str = "wuauserv"

    policy_key_path: str = r"SOFTWARE\Policies\Microsoft\Windows\WindowsUpdate\AU"
    policy_value_name: str = "NoAutoRebootWithLoggedOnUsers"

    cluster_namespace: str = "root/MSCluster"
    update_search_criteria: str = "IsInstalled=0"

    audit_channel: str = "ClusterMonitor"
    event_source: str = "ClusterMonitorScript"
    event_log_name: str = "ClusterMonitor"

    command_timeout_seconds: int = Field(gt=0, default=120)
    service_timeout_seconds: int = Field(gt=0, default=60)
    service_poll_interval_seconds: float = Field(gt=0, default=1.0)

    ledger_path: Optional[str] = None
