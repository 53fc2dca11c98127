"""
Cluster Directory Client — enumerates cluster members and their health.

Behavioral Contract:
- list_members() either returns the full member list or raises DirectoryUnavailable
- get_health() never raises; a failed query downgrades the member to UNKNOWN
  and is recorded on the audit sink
- Read-only: nothing here changes cluster state

The WMI adapter queries the MSCluster_Node class of a Windows failover cluster
through PowerShell. If that class is not registered, it is provisioned once by
compiling ClusWMI.mof.
"""

import json
import logging
import ntpath
import os
import subprocess
from typing import Any, List, Optional, Protocol

from quorum_guard.audit.sink import AuditSink
from quorum_guard.models.audit import AuditSeverity
from quorum_guard.models.cluster import ClusterMember, MemberHealth
from quorum_guard.models.config import GuardConfig
from quorum_guard.platform.shell import (
    CommandRunner,
    command_output,
    powershell,
    ps_quote,
    run_command,
)

logger = logging.getLogger(__name__)

NODE_CLASS = "MSCluster_Node"
NODE_STATE_UP = 0

_INVALID_CLASS_MARKERS = ("invalid class", "0x80041010")


class DirectoryUnavailable(Exception):
    """Raised when the cluster member list cannot be enumerated at all."""
    pass


class ClusterDirectoryClient(Protocol):
    """Protocol for cluster directories — pluggable backend."""

    def list_members(self) -> List[ClusterMember]: ...

    def get_health(self, member: ClusterMember) -> MemberHealth: ...


class WmiClusterDirectory:
    """Cluster directory backed by WMI's root/MSCluster namespace."""

    def __init__(
        self,
        config: GuardConfig,
        sink: AuditSink,
        runner: CommandRunner = run_command,
    ):
        self.config = config
        self.sink = sink
        self._runner = runner
        self._capability_checked = False

    def ensure_query_capability(self) -> None:
        """Make sure MSCluster_Node is queryable, compiling ClusWMI.mof once if not."""
        if self._capability_checked:
            return
        self._capability_checked = True

        check = self._node_query() + " | Out-Null"
        try:
            completed = self._run(powershell(check))
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            self.sink.record(
                f"Unexpected error while ensuring WMI classes: {e}",
                AuditSeverity.ERROR,
            )
            return

        if completed.returncode == 0:
            return

        output = command_output(completed)
        if not _is_invalid_class(output):
            self.sink.record(
                f"Unexpected error while ensuring WMI classes: {output}",
                AuditSeverity.ERROR,
            )
            return

        self.sink.record(
            f"{NODE_CLASS} class not found. Compiling ClusWMI.mof...",
            AuditSeverity.WARNING,
        )
        self._compile_mof()

    def _compile_mof(self) -> None:
        mof_path = ntpath.join(
            os.environ.get("SystemRoot", r"C:\Windows"), "System32", "wbem", "ClusWMI.mof"
        )
        try:
            completed = self._run(["mofcomp", mof_path])
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            self.sink.record(f"Error compiling ClusWMI.mof: {e}", AuditSeverity.ERROR)
            return

        if completed.returncode == 0:
            self.sink.record("Successfully compiled ClusWMI.mof.", AuditSeverity.INFO)
        else:
            self.sink.record(
                f"Failed to compile ClusWMI.mof: {command_output(completed)}",
                AuditSeverity.ERROR,
            )

    def list_members(self) -> List[ClusterMember]:
        """Enumerate every node the cluster reports, duplicates included."""
        script = self._node_query() + " | Select-Object -Property Name | ConvertTo-Json -Compress"
        try:
            completed = self._run(powershell(script))
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            raise DirectoryUnavailable(f"Unexpected error retrieving cluster nodes: {e}") from e

        if completed.returncode != 0:
            raise DirectoryUnavailable(
                f"Error retrieving cluster nodes: {command_output(completed)}. "
                "Please ensure the Failover Clustering feature is installed "
                "and the Cluster Service is running."
            )

        try:
            rows = _parse_json_rows(completed.stdout)
            members = [ClusterMember(name=str(row["Name"])) for row in rows]
        except (ValueError, KeyError, TypeError) as e:
            raise DirectoryUnavailable(f"Unreadable cluster node list: {e}") from e

        logger.debug("Enumerated %d cluster members", len(members))
        return members

    def get_health(self, member: ClusterMember) -> MemberHealth:
        """Health of one member; UNKNOWN if the query itself fails."""
        script = (
            self._node_query()
            + f" | Where-Object {{ $_.Name -eq {ps_quote(member.name)} }}"
            + " | Select-Object -Property State | ConvertTo-Json -Compress"
        )
        try:
            completed = self._run(powershell(script))
            if completed.returncode != 0:
                raise RuntimeError(command_output(completed))
            rows = _parse_json_rows(completed.stdout)
            states = [row.get("State") for row in rows]
        except Exception as e:
            self.sink.record(
                f"Error checking node status for '{member.name}': {e}",
                AuditSeverity.ERROR,
            )
            return MemberHealth.UNKNOWN

        if any(_state_code(s) == NODE_STATE_UP for s in states):
            return MemberHealth.ONLINE
        return MemberHealth.OFFLINE

    def _node_query(self) -> str:
        return (
            f"Get-CimInstance -Namespace {ps_quote(self.config.cluster_namespace)} "
            f"-ClassName {NODE_CLASS} -ErrorAction Stop"
        )

    def _run(self, args: List[str]) -> "subprocess.CompletedProcess[str]":
        return self._runner(args, self.config.command_timeout_seconds)


def _is_invalid_class(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _INVALID_CLASS_MARKERS)


def _parse_json_rows(stdout: Optional[str]) -> List[dict]:
    """ConvertTo-Json emits nothing, one object, or an array of objects."""
    text = (stdout or "").strip()
    if not text:
        return []
    data: Any = json.loads(text)
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        return data
    raise ValueError(f"expected JSON object or array, got {type(data).__name__}")


def _state_code(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
