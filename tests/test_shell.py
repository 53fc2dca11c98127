"""Tests for the command runner."""

import sys

from quorum_guard.platform.shell import command_output, powershell, ps_quote, run_command

# Writes "Ungültige Klasse" in cp850, where ü is 0x81
_LOCALIZED_FAILURE = (
    "import sys; sys.stderr.buffer.write(b'Ung\\x81ltige Klasse'); sys.exit(1)"
)


class TestRunCommand:
    def test_captures_output_and_exit_code(self):
        completed = run_command([sys.executable, "-c", "print('3')"], timeout=30)
        assert completed.returncode == 0
        assert completed.stdout.strip() == "3"

    def test_undecodable_output_is_replaced_not_raised(self):
        completed = run_command([sys.executable, "-c", _LOCALIZED_FAILURE], timeout=30)

        assert completed.returncode == 1
        assert completed.stderr.startswith("Ung")
        assert completed.stderr.endswith("ltige Klasse")
        assert command_output(completed).endswith("ltige Klasse")


class TestHelpers:
    def test_powershell_is_non_interactive(self):
        args = powershell("Get-Date")
        assert args[0] == "powershell.exe"
        assert "-NonInteractive" in args
        assert args[-1] == "Get-Date"

    def test_ps_quote_doubles_single_quotes(self):
        assert ps_quote("node'1") == "'node''1'"

    def test_command_output_falls_back_to_exit_code(self):
        completed = run_command([sys.executable, "-c", "import sys; sys.exit(3)"], timeout=30)
        assert command_output(completed) == "exit code 3"
