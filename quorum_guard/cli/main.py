"""
Entry point — runs exactly one reconciliation pass and exits.

There is no loop and no daemon mode; schedule the command externally
(for example with a Task Scheduler job every few minutes).

Exit status:
  0  the pass completed, whatever the individual step outcomes
  1  the pass could not start (bad configuration, collaborator construction)
     or failed unexpectedly
"""

import argparse
import logging
import sqlite3
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import ValidationError

from quorum_guard.applier.windows import PolicyApplier, WindowsPolicyApplier
from quorum_guard.audit.ledger import OutcomeLedger
from quorum_guard.audit.sink import LoggingAuditSink, open_audit_channel
from quorum_guard.directory.client import ClusterDirectoryClient, WmiClusterDirectory
from quorum_guard.engine.reconciler import QuorumPolicyEngine
from quorum_guard.models.audit import AuditSeverity
from quorum_guard.models.config import GuardConfig
from quorum_guard.models.policy import ReconciliationOutcome

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ConfigurationError(Exception):
    """Raised when the guard configuration cannot be loaded."""
    pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quorum-guard",
        description=(
            "Allow or prevent automatic update reboots on this cluster node "
            "depending on how many cluster nodes are online."
        ),
    )
    parser.add_argument(
        "--dry-run", "--simulate",
        dest="dry_run",
        action="store_true",
        help="Decide and report, but change nothing",
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument(
        "--threshold",
        type=int,
        help="Minimum number of online nodes required to allow maintenance",
    )
    parser.add_argument("--service", help="Name of the maintenance service")
    parser.add_argument("--ledger", help="SQLite file recording every pass outcome")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def load_config(args: argparse.Namespace) -> GuardConfig:
    """Load the JSON config file (if any) and apply command-line overrides."""
    data = {}
    if args.config is not None:
        try:
            data = GuardConfig.model_validate_json(args.config.read_text()).model_dump()
        except OSError as e:
            raise ConfigurationError(f"Cannot read {args.config}: {e}") from e
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {args.config}: {e}") from e

    if args.threshold is not None:
        data["online_threshold"] = args.threshold
    if args.service:
        data["maintenance_service"] = args.service
    if args.ledger:
        data["ledger_path"] = args.ledger

    try:
        return GuardConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def build_collaborators(
    config: GuardConfig,
) -> Tuple[LoggingAuditSink, ClusterDirectoryClient, PolicyApplier]:
    """Create the audit sink, cluster directory and policy applier."""
    sink = LoggingAuditSink(open_audit_channel(config))
    directory = WmiClusterDirectory(config, sink)
    directory.ensure_query_capability()
    applier = WindowsPolicyApplier(config)
    return sink, directory, applier


def run_pass(
    config: GuardConfig,
    simulate: bool,
    sink: LoggingAuditSink,
    directory: ClusterDirectoryClient,
    applier: PolicyApplier,
) -> ReconciliationOutcome:
    """Run one reconciliation pass and append it to the ledger when configured."""
    engine = QuorumPolicyEngine(
        directory=directory,
        applier=applier,
        sink=sink,
        config=config,
        simulate=simulate,
    )
    outcome = engine.reconcile()

    if config.ledger_path:
        try:
            ledger = OutcomeLedger(config.ledger_path)
            try:
                ledger.append(outcome)
            finally:
                ledger.close()
        except sqlite3.Error as e:
            sink.record(f"Could not record outcome in ledger: {e}", AuditSeverity.ERROR)

    return outcome


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    try:
        sink, directory, applier = build_collaborators(config)
    except Exception:
        logger.exception("Could not initialise the cluster guard")
        return 1

    try:
        outcome = run_pass(config, args.dry_run, sink, directory, applier)
    except Exception:
        logger.exception("Unexpected failure during the reconciliation pass")
        return 1

    failed = len(outcome.failed_steps)
    logger.info(
        "Pass complete: %s (%d/%d online)%s%s",
        outcome.decision.value,
        outcome.assessment.online_count,
        outcome.assessment.total_members,
        ", dry run" if outcome.simulated else "",
        f", {failed} step(s) failed" if failed else "",
    )
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
