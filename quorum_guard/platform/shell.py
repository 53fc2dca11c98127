"""
Command runner used by the Windows adapters.

Every external call (PowerShell, reg.exe, sc.exe, mofcomp) goes through a
``CommandRunner`` so adapters can be exercised with a fake runner in tests.
"""

import logging
import subprocess
import sys
from typing import Callable, List

logger = logging.getLogger(__name__)

# Console tools write the OEM code page, not the ANSI one the locale reports
_OUTPUT_ENCODING = "oem" if sys.platform == "win32" else None

CommandRunner = Callable[[List[str], int], "subprocess.CompletedProcess[str]"]


def run_command(args: List[str], timeout: int) -> "subprocess.CompletedProcess[str]":
    """
    Run a command to completion, capturing text output. Never checks the exit code.

    Undecodable bytes in the output are replaced rather than raised, so a
    localized error message still reaches the caller as text.
    """
    logger.debug("Running %s", args)
    completed = subprocess.run(
        args,
        capture_output=True,
        text=True,
        encoding=_OUTPUT_ENCODING,
        errors="replace",
        timeout=timeout,
    )
    logger.debug("%s exited with %s", args[0], completed.returncode)
    return completed


def powershell(script: str) -> List[str]:
    """Build the argv for a non-interactive PowerShell invocation."""
    return [
        "powershell.exe",
        "-NoProfile",
        "-NonInteractive",
        "-ExecutionPolicy",
        "Bypass",
        "-Command",
        script,
    ]


def ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + value.replace("'", "''") + "'"


def command_output(completed: "subprocess.CompletedProcess[str]") -> str:
    """Best human-readable text from a finished command."""
    text = (completed.stderr or "").strip() or (completed.stdout or "").strip()
    return text or f"exit code {completed.returncode}"
