"""
Shared fakes for quorum guard tests.

FakeDirectory / FakeApplier stand in for the collaborator protocols.
FakeWindowsHost plays the part of powershell.exe, reg.exe, sc.exe and mofcomp
so the Windows adapters can run against it through their command runner.
"""

import json
import logging
import re
import subprocess
from typing import Dict, List, Optional, Set, Tuple

import pytest

from quorum_guard.applier.windows import ApplyError
from quorum_guard.audit.sink import LoggingAuditSink
from quorum_guard.directory.client import DirectoryUnavailable
from quorum_guard.models.cluster import ClusterMember, MemberHealth


class FakeDirectory:
    """Directory returning canned members and health values."""

    def __init__(
        self,
        health: Optional[List[Tuple[str, MemberHealth]]] = None,
        unavailable: bool = False,
    ):
        self.entries = health or []
        self.unavailable = unavailable
        self.health_queries: List[str] = []

    def list_members(self) -> List[ClusterMember]:
        if self.unavailable:
            raise DirectoryUnavailable("Error retrieving cluster nodes: cluster service not running")
        return [ClusterMember(name=name) for name, _ in self.entries]

    def get_health(self, member: ClusterMember) -> MemberHealth:
        self.health_queries.append(member.name)
        for name, health in self.entries:
            if name == member.name:
                return health
        return MemberHealth.OFFLINE


class FakeApplier:
    """In-memory applier with real idempotent state and injectable failures."""

    def __init__(self, service_running: bool = False, pending_updates: int = 0):
        self.flag: Optional[int] = None
        self.service_running = service_running
        self.pending_updates = pending_updates
        self.fail: Set[str] = set()
        self.calls: List[str] = []

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise ApplyError(f"{name} failed on purpose")

    def set_permission_flag(self, allow: bool) -> str:
        self._maybe_fail("set_permission_flag")
        self.flag = 0 if allow else 1
        return f"flag={self.flag}"

    def ensure_service_stopped(self, service: str) -> str:
        self._maybe_fail("ensure_service_stopped")
        self.service_running = False
        return f"{service} stopped"

    def ensure_service_running(self, service: str) -> str:
        self._maybe_fail("ensure_service_running")
        self.service_running = True
        return f"{service} running"

    def trigger_rescan(self) -> int:
        self._maybe_fail("trigger_rescan")
        return self.pending_updates


_SC_STATES = {"STOPPED": 1, "START_PENDING": 2, "STOP_PENDING": 3, "RUNNING": 4}
_NAME_FILTER = re.compile(r"\$_\.Name -eq '((?:[^']|'')*)'")


def _done(stdout: str = "", stderr: str = "", returncode: int = 0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeWindowsHost:
    """Simulates the commands the Windows adapters issue."""

    def __init__(self):
        self.nodes: List[Tuple[str, int]] = []
        self.node_class_registered = True
        self.mofcomp_succeeds = True
        self.cluster_down = False
        self.broken_nodes: Set[str] = set()

        self.registry: Dict[str, int] = {}
        self.services: Dict[str, str] = {"wuauserv": "STOPPED"}
        self.pending_polls = 0
        self.sc_control_fails = False

        self.pending_updates = 0
        self.update_agent_fails = False

        self.commands: List[List[str]] = []

    def __call__(self, args: List[str], timeout: int) -> subprocess.CompletedProcess:
        self.commands.append(list(args))
        program = args[0].lower()
        if program == "powershell.exe":
            return self._powershell(args[-1])
        if program == "reg":
            return self._reg(args)
        if program == "sc":
            return self._sc(args)
        if program == "mofcomp":
            if self.mofcomp_succeeds:
                self.node_class_registered = True
                return _done("MOF file has been successfully parsed")
            return _done(stderr="An error occurred while parsing the MOF file", returncode=1)
        raise FileNotFoundError(args[0])

    def commands_for(self, program: str) -> List[List[str]]:
        return [c for c in self.commands if c[0].lower() == program]

    # --- powershell ---

    def _powershell(self, script: str) -> subprocess.CompletedProcess:
        if "Microsoft.Update.Session" in script:
            if self.update_agent_fails:
                return _done(stderr="Exception from HRESULT: 0x8024402C", returncode=1)
            return _done(f"{self.pending_updates}\r\n")

        if "MSCluster_Node" in script:
            if not self.node_class_registered:
                return _done(stderr="Get-CimInstance : Invalid class", returncode=1)
            if self.cluster_down:
                return _done(stderr="The cluster service is not running", returncode=1)
            if "Out-Null" in script:
                return _done()
            match = _NAME_FILTER.search(script)
            if match:
                name = match.group(1).replace("''", "'")
                if name in self.broken_nodes:
                    return _done(stderr="RPC server unavailable", returncode=1)
                rows = [{"State": state} for n, state in self.nodes if n == name]
            else:
                rows = [{"Name": n} for n, _ in self.nodes]
            if not rows:
                return _done()
            payload = rows[0] if len(rows) == 1 else rows
            return _done(json.dumps(payload))

        return _done(stderr=f"unexpected script: {script}", returncode=1)

    # --- reg.exe ---

    def _reg(self, args: List[str]) -> subprocess.CompletedProcess:
        key = args[2]
        name = args[args.index("/v") + 1]
        value = int(args[args.index("/d") + 1])
        self.registry[f"{key}\\{name}"] = value
        return _done("The operation completed successfully.")

    # --- sc.exe ---

    def _sc(self, args: List[str]) -> subprocess.CompletedProcess:
        verb, service = args[1], args[2]
        if service not in self.services:
            return _done("[SC] OpenService FAILED 1060", returncode=1060)

        if verb == "query":
            state = self.services[service]
            if state.endswith("_PENDING"):
                if self.pending_polls > 0:
                    self.pending_polls -= 1
                else:
                    state = "RUNNING" if state == "START_PENDING" else "STOPPED"
                    self.services[service] = state
            return _done(
                f"SERVICE_NAME: {service}\n"
                f"        TYPE               : 20  WIN32_SHARE_PROCESS\n"
                f"        STATE              : {_SC_STATES[state]}  {state}\n"
            )

        if self.sc_control_fails:
            return _done("[SC] StartService FAILED 5: Access is denied.", returncode=5)
        if verb == "start":
            self.services[service] = "START_PENDING"
        elif verb == "stop":
            self.services[service] = "STOP_PENDING"
        return _done()


@pytest.fixture
def sink() -> LoggingAuditSink:
    return LoggingAuditSink(logging.getLogger("quorum_guard.tests.audit"))


@pytest.fixture
def host() -> FakeWindowsHost:
    return FakeWindowsHost()
