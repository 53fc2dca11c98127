"""
Policy Applier — drives the host toward the reconciled maintenance policy.

Behavioral Contract:
- Every operation is idempotent: re-applying the current state is a success
- Every operation returns a short human-readable detail or raises ApplyError
- Never decides policy; only applies what the engine asks for

The Windows adapter writes the automatic-update reboot policy to the registry,
controls the update service with sc.exe, and asks the Windows Update Agent
to search for pending updates.
"""

import logging
import re
import subprocess
import time
from typing import Callable, List, Optional, Protocol

from quorum_guard.models.config import GuardConfig
from quorum_guard.platform.shell import (
    CommandRunner,
    command_output,
    powershell,
    ps_quote,
    run_command,
)

logger = logging.getLogger(__name__)

FLAG_RESTRICTED = 1
FLAG_ALLOWED = 0

SERVICE_RUNNING = "RUNNING"
SERVICE_STOPPED = "STOPPED"

_STATE_PATTERN = re.compile(r"STATE\s*:\s*\d+\s+(\w+)")


class ApplyError(Exception):
    """Raised when a policy step cannot be applied."""
    pass


class PolicyApplier(Protocol):
    """Protocol for policy appliers — pluggable backend."""

    def set_permission_flag(self, allow: bool) -> str: ...

    def ensure_service_stopped(self, service: str) -> str: ...

    def ensure_service_running(self, service: str) -> str: ...

    def trigger_rescan(self) -> int: ...


class WindowsPolicyApplier:
    """Applies the maintenance policy on a Windows cluster node."""

    def __init__(
        self,
        config: GuardConfig,
        runner: CommandRunner = run_command,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._runner = runner
        self._sleep = sleep
        self._clock = clock

    # --- Permission flag ---

    def set_permission_flag(self, allow: bool) -> str:
        """Write NoAutoRebootWithLoggedOnUsers: 0 allows reboots, 1 restricts them."""
        value = FLAG_ALLOWED if allow else FLAG_RESTRICTED
        key = "HKLM\\" + self.config.policy_key_path
        completed = self._run([
            "reg", "add", key,
            "/v", self.config.policy_value_name,
            "/t", "REG_DWORD",
            "/d", str(value),
            "/f",
        ])
        if completed.returncode != 0:
            raise ApplyError(f"Error setting registry key value: {command_output(completed)}")
        return f"{self.config.policy_value_name}={value}"

    # --- Service control ---

    def ensure_service_stopped(self, service: str) -> str:
        return self._ensure_service_state(service, SERVICE_STOPPED, "stop")

    def ensure_service_running(self, service: str) -> str:
        return self._ensure_service_state(service, SERVICE_RUNNING, "start")

    def _ensure_service_state(self, service: str, target: str, verb: str) -> str:
        current = self.query_service_state(service)
        if current == target:
            return f"service '{service}' already {target.lower()}"

        completed = self._run(["sc", verb, service])
        if completed.returncode != 0:
            # The service may have reached the target between query and control
            if self.query_service_state(service) == target:
                return f"service '{service}' {target.lower()}"
            action = "stopping" if verb == "stop" else "starting"
            raise ApplyError(
                f"Error {action} service '{service}': {command_output(completed)}"
            )

        self._wait_for_state(service, target)
        return f"service '{service}' {target.lower()}"

    def _wait_for_state(self, service: str, target: str) -> None:
        deadline = self._clock() + self.config.service_timeout_seconds
        while True:
            state = self.query_service_state(service)
            if state == target:
                return
            if self._clock() >= deadline:
                raise ApplyError(
                    f"Timed out waiting for service '{service}' to reach {target} "
                    f"(last state: {state or 'unknown'})"
                )
            self._sleep(self.config.service_poll_interval_seconds)

    def query_service_state(self, service: str) -> Optional[str]:
        """Current sc.exe state name (RUNNING, STOPPED, START_PENDING, ...)."""
        completed = self._run(["sc", "query", service])
        if completed.returncode != 0:
            raise ApplyError(f"Cannot query service '{service}': {command_output(completed)}")
        match = _STATE_PATTERN.search(completed.stdout or "")
        return match.group(1).upper() if match else None

    # --- Update rescan ---

    def trigger_rescan(self) -> int:
        """Ask the Windows Update Agent for pending updates; returns their count."""
        script = (
            "$session = New-Object -ComObject Microsoft.Update.Session; "
            "$searcher = $session.CreateUpdateSearcher(); "
            f"$result = $searcher.Search({ps_quote(self.config.update_search_criteria)}); "
            "$result.Updates.Count"
        )
        completed = self._run(powershell(script))
        if completed.returncode != 0:
            raise ApplyError(f"Update detection failed: {command_output(completed)}")
        try:
            return int((completed.stdout or "").strip().splitlines()[-1])
        except (IndexError, ValueError) as e:
            raise ApplyError(f"Update detection returned no count: {completed.stdout!r}") from e

    def _run(self, args: List[str]) -> "subprocess.CompletedProcess[str]":
        try:
            return self._runner(args, self.config.command_timeout_seconds)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            raise ApplyError(f"Could not run {args[0]}: {e}") from e
