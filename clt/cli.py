"""Command-line interface for recording, replaying and comparing sessions."""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from .compare.models import ComparisonReport, ExitStatus
from .compare.renderers import ReportRenderer
from .config_loader import ConfigurationError, load_config
from .config_models import SystemConfig
from .document.models import ExecutionStatus
from .document.parser import replay_file_path
from .interfaces import (
    BlockReferenceError,
    ComparisonError,
    ExecutorError,
    ParseError,
    PlaceholderError,
)
from .logging_config import get_logger, setup_logging
from .patterns import load_registry
from .session.manager import SessionManager


def create_parser() -> argparse.ArgumentParser:
    """Create the command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="clt",
        description="Record, replay and compare interactive shell sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Record a session against the default target
  clt record tests/install.rec

  # Replay it and compare the output with the recording
  clt test tests/install.rec --target ubuntu

  # Compare against an existing replay artifact, side by side
  clt compare tests/install.rec --layout side-by-side

  # Accept new output for failing steps
  clt refine tests/install.rec
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        help='Path to configuration file (default: .clt/config.yml)'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress output messages'
    )

    target_options = argparse.ArgumentParser(add_help=False)
    target_options.add_argument(
        '--target',
        help='Named target environment from the configuration'
    )

    replay_options = argparse.ArgumentParser(add_help=False)
    replay_options.add_argument(
        '--delay',
        type=int,
        metavar='MS',
        help='Milliseconds to wait between steps (overrides config)'
    )
    replay_options.add_argument(
        '--timeout',
        type=float,
        metavar='SECONDS',
        help='Per-step timeout (overrides config)'
    )
    replay_options.add_argument(
        '--fail-fast',
        action='store_true',
        help='Stop at the first step that fails to execute or exits nonzero'
    )

    render_options = argparse.ArgumentParser(add_help=False)
    render_options.add_argument(
        '--layout',
        choices=['inline', 'side-by-side'],
        help='Diff layout (overrides config)'
    )
    render_options.add_argument(
        '--no-color',
        action='store_true',
        help='Disable colored output'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    record = subparsers.add_parser('record', parents=[target_options], help='Record an interactive session')
    record.add_argument('file', type=Path, help='Session file to write (.rec)')
    record.add_argument('--description', help='Description written at the top of the file')

    replay = subparsers.add_parser('replay', parents=[target_options, replay_options],
                                   help='Replay a session and write its .rep artifact')
    replay.add_argument('file', type=Path, help='Session file (.rec)')

    compare = subparsers.add_parser('compare', parents=[render_options],
                                    help='Compare a session with its replay artifact')
    compare.add_argument('file', type=Path, help='Session file (.rec)')
    compare.add_argument('replay_file', type=Path, nargs='?', help='Replay artifact (default: FILE.rep)')

    test = subparsers.add_parser('test', parents=[target_options, replay_options, render_options],
                                 help='Replay a session and compare the result')
    test.add_argument('file', type=Path, help='Session file (.rec)')

    refine = subparsers.add_parser('refine', parents=[target_options, replay_options],
                                   help='Replay a session and accept new output for failing steps')
    refine.add_argument('file', type=Path, help='Session file (.rec)')

    subparsers.add_parser('patterns', help='List the available placeholder patterns')

    return parser


def apply_overrides(config: SystemConfig, args: argparse.Namespace) -> None:
    """Apply command-line options on top of the loaded configuration."""
    target = getattr(args, 'target', None)
    if target is not None:
        if target not in config.targets:
            raise ConfigurationError(f"Unknown target '{target}', available: {sorted(config.targets)}")
        config.default_target = target

    if getattr(args, 'delay', None) is not None:
        if args.delay < 0:
            raise ConfigurationError("Delay must not be negative")
        config.replay.inter_step_delay_ms = args.delay
    if getattr(args, 'timeout', None) is not None:
        if args.timeout <= 0:
            raise ConfigurationError("Timeout must be positive")
        config.replay.step_timeout = args.timeout
    if getattr(args, 'fail_fast', False):
        config.replay.fail_fast = True

    if getattr(args, 'layout', None):
        config.compare.layout = args.layout
    if getattr(args, 'no_color', False):
        config.compare.color = False


def print_report(report: ComparisonReport, config: SystemConfig, quiet: bool = False) -> None:
    """Print a comparison report to stdout."""
    renderer = ReportRenderer(color=config.compare.color, layout=config.compare.layout)
    console = Console(no_color=not config.compare.color, highlight=False)
    if quiet:
        if not report.success:
            for result in report.failures:
                print(f"FAIL step {result.step_index + 1}: {result.command}", file=sys.stderr)
        return
    renderer.print(report, console)


def run_record(manager: SessionManager, args: argparse.Namespace) -> int:
    result = manager.record(args.file, description=args.description)
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    if not args.quiet:
        print(f"Recorded {len(result.document.command_steps)} step(s) to {args.file}")
    return ExitStatus.CANCELLED if result.interrupted else ExitStatus.PASSED


def run_replay(manager: SessionManager, args: argparse.Namespace) -> int:
    actual = manager.replay(args.file)
    if not args.quiet:
        summary = actual.get_summary()
        print(f"Replayed {summary['total_steps']} step(s) to {replay_file_path(args.file)}")
        for status, count in summary["statuses"].items():
            print(f"  {status}: {count}")

    if actual.cancelled:
        return ExitStatus.CANCELLED
    if any(step.status != ExecutionStatus.COMPLETED for step in actual.steps):
        return ExitStatus.FAILED
    return ExitStatus.PASSED


def run_compare(manager: SessionManager, args: argparse.Namespace) -> int:
    report = manager.compare(args.file, args.replay_file)
    print_report(report, manager.config, args.quiet)
    return report.exit_status


def run_test(manager: SessionManager, args: argparse.Namespace) -> int:
    report = manager.test(args.file)
    print_report(report, manager.config, args.quiet)
    return report.exit_status


def run_refine(manager: SessionManager, args: argparse.Namespace) -> int:
    report, summary = manager.refine(args.file)
    if report.cancelled:
        return ExitStatus.CANCELLED

    if not args.quiet:
        if summary.refined:
            steps = ", ".join(str(index + 1) for index in summary.refined)
            print(f"Refined step(s) {steps} in {args.file}")
        else:
            print("Nothing to refine")
        for skipped in summary.skipped:
            print(f"Skipped step {skipped.step_index + 1} ({skipped.command}): {skipped.reason}")
    return ExitStatus.PASSED


def run_patterns(config: SystemConfig, args: argparse.Namespace) -> int:
    registry = load_registry(config)
    for warning in registry.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    if not args.quiet:
        width = max((len(identifier) for identifier in registry), default=0)
        for identifier, regex in registry.items():
            print(f"{identifier:<{width}}  {regex}")
    return ExitStatus.PASSED


COMMANDS = {
    'record': run_record,
    'replay': run_replay,
    'compare': run_compare,
    'test': run_test,
    'refine': run_refine,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    logger = get_logger(__name__)

    try:
        config = load_config(args.config)
        apply_overrides(config, args)
        setup_logging(config)

        if args.command == 'patterns':
            return int(run_patterns(config, args))

        manager = SessionManager(config)
        return int(COMMANDS[args.command](manager, args))

    except KeyboardInterrupt:
        if not args.quiet:
            print("\nOperation cancelled by user", file=sys.stderr)
        return int(ExitStatus.CANCELLED)

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return int(ExitStatus.MISSING_FILE)

    except (ParseError, BlockReferenceError, PlaceholderError, ComparisonError) as e:
        logger.info(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return int(ExitStatus.STRUCTURAL_ERROR)

    except (ConfigurationError, ExecutorError) as e:
        logger.info(f"{type(e).__name__}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return int(ExitStatus.SETUP_ERROR)

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return int(ExitStatus.SETUP_ERROR)


if __name__ == '__main__':
    sys.exit(main())
