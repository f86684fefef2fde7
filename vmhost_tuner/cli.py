"""
CLI - Command-line interface for vmhost_tuner.

Applies the hypervisor host policy, or shows it (--dry-run), or only
reads back the current state (--verify-only).
"""

import argparse
import logging
from typing import List, Optional

from . import __version__
from .config import Config
from .discovery.system import SystemScanner
from .protocol.errors import ConfigError, PrivilegeError
from .protocol.tuning import StepName, TuningReport
from .tuning.executor import HostTuner
from .ui.console import ConsoleUI, setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PRIVILEGE = 1
EXIT_CONFIG = 2


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="vmhost-tune",
        description="Kernel and device tuning for KVM/QEMU hypervisor hosts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    sudo vmhost-tune
    sudo vmhost-tune --skip cpu --no-install

    # Show the files that would be written
    vmhost-tune --dry-run

    # Only read back the current state
    vmhost-tune --verify-only

Config file (searched in order):
    /etc/vmhost-tuner/config.toml
    ~/.config/vmhost-tuner/config.toml
    ./vmhost-tuner.toml
        """,
    )

    parser.add_argument(
        "-c", "--config",
        metavar="PATH",
        help="TOML config file"
    )

    # ==================== Operation Modes ====================
    mode_group = parser.add_argument_group('Operation Modes')
    modes = mode_group.add_mutually_exclusive_group()

    modes.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the files and values that would be applied, change nothing"
    )
    modes.add_argument(
        "--verify-only",
        action="store_true",
        help="Read back the current values, change nothing"
    )

    # ==================== Policy ====================
    policy_group = parser.add_argument_group('Policy')

    policy_group.add_argument(
        "--skip",
        action="append",
        default=[],
        choices=[s.value for s in StepName],
        help="Leave a step alone (repeatable)"
    )
    policy_group.add_argument(
        "--governor",
        help="CPU governor to set (default: performance)"
    )
    policy_group.add_argument(
        "--no-install",
        action="store_true",
        help="Do not install the cpufrequtils helper package"
    )

    # ==================== Output ====================
    output_group = parser.add_argument_group('Output')

    output_group.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="More log output (-vv for debug)"
    )
    output_group.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only print errors"
    )
    output_group.add_argument(
        "--json",
        action="store_true",
        help="Print the final report as JSON"
    )
    output_group.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser.parse_args(argv)


def load_config(args) -> Config:
    """Load, override and validate the configuration."""
    config = Config.load(args.config)
    config.override_from_args(args)

    errors = config.validate()
    if errors:
        raise ConfigError("Invalid configuration", errors)
    return config


def run_dry_run(tuner: HostTuner, ui: ConsoleUI):
    ui.print_plan(tuner.plan())
    ui.print("[dim]Dry run: nothing was changed.[/]")


def run_verify_only(tuner: HostTuner, ui: ConsoleUI, as_json: bool):
    verification = tuner.verify()
    if as_json:
        report = TuningReport(policy_version=tuner.policy.version, verification=verification)
        print(report.to_json())
        return
    ui.print_verification(verification)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    quiet = args.quiet or args.json

    ui = ConsoleUI(quiet=quiet)
    setup_logging(verbose=args.verbose, quiet=quiet)

    try:
        config = load_config(args)
    except ConfigError as e:
        ui.print_error(str(e))
        for error in e.errors:
            ui.print_error(f"  {error}")
        return EXIT_CONFIG

    tuner = HostTuner(config=config)

    ui.print_banner()
    ui.print(f"[dim]{config.summary()}[/]")
    ui.print_host(SystemScanner(config.paths).scan())

    if args.dry_run:
        run_dry_run(tuner, ui)
        return EXIT_OK

    if args.verify_only:
        run_verify_only(tuner, ui, args.json)
        return EXIT_OK

    try:
        report = tuner.run(skip=args.skip, on_step=ui.print_step)
    except PrivilegeError as e:
        ui.print_error(str(e))
        return EXIT_PRIVILEGE

    if args.json:
        print(report.to_json())
    else:
        ui.print_verification(report.verification)
        ui.print_summary(report)

    totals = report.totals()
    logger.info(
        "Run complete: %d applied, %d skipped, %d failed",
        totals["applied"], totals["skipped"], totals["failed"],
    )
    return EXIT_OK
