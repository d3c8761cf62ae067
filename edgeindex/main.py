"""Command line entry point: ``edgeindex update`` and ``edgeindex status``."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from .core.errors import ConfigError, HardUpdateError, UpdateInProgress
from .updater.service import ReleaseUpdater, UpdateReport
from .updater.swap import CURRENT_NAME, ROLLBACK_NAME
from .utils.config import UpdaterConfig, load_config
from .utils.logger import configure_logging

EXIT_OK = 0
EXIT_HARD_FAILURE = 1
EXIT_POST_SWAP_FAILURE = 2
EXIT_LOCKED = 3


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="edgeindex", description="Verified atomic index releases")
    parser.add_argument("--base-dir", help="Directory holding releases/, current and rollback")
    parser.add_argument("--config", help="JSON config file")
    parser.add_argument("--debug", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    update = sub.add_parser("update", help="Verify, stage and promote a signed release")
    update.add_argument("manifest")
    update.add_argument("signature")
    update.add_argument("public_key")
    update.add_argument("--keep", type=int, help="Releases to retain (overrides config)")

    sub.add_parser("status", help="Show current and rollback releases")
    return parser


def _resolve_config(args: argparse.Namespace) -> UpdaterConfig:
    config = load_config(args.config)
    if args.base_dir:
        config.base_dir = args.base_dir
    if getattr(args, "keep", None) is not None:
        config.retention_count = args.keep
    return config.validate()


def _print_report(report: UpdateReport, base_dir: Path) -> None:
    print(f"Version: {report.previous_version} -> {report.version}")
    print(f"Files: {report.files_count} processed")
    print(f"Size: {report.total_bytes} bytes")
    if report.pruned:
        print(f"Pruned: {', '.join(report.pruned)}")
    for failure in report.soft_failures:
        print(f"WARNING {type(failure).__name__}: {failure}", file=sys.stderr)
    if report.rollback_target:
        print("Rollback command (if needed):")
        print(f'  ln -sfn "$(readlink {base_dir / ROLLBACK_NAME})" {base_dir / CURRENT_NAME}')


def run_update(args: argparse.Namespace, config: UpdaterConfig) -> int:
    updater = ReleaseUpdater(config)
    try:
        report = updater.run(args.manifest, args.signature, args.public_key)
    except UpdateInProgress as e:
        print(f"Update refused: {e}", file=sys.stderr)
        return EXIT_LOCKED
    except HardUpdateError as e:
        print(f"Update failed ({type(e).__name__}, phase {e.phase}): {e}", file=sys.stderr)
        return EXIT_HARD_FAILURE
    except OSError as e:
        print(f"Update failed: {e}", file=sys.stderr)
        return EXIT_HARD_FAILURE

    _print_report(report, updater.base_dir)
    if not report.post_swap_verified:
        return EXIT_POST_SWAP_FAILURE
    return EXIT_OK


def run_status(config: UpdaterConfig) -> int:
    updater = ReleaseUpdater(config)
    status = updater.status()
    print(f"Active: {status.current_version or 'None'}")
    print(f"Rollback available: {status.rollback_version or 'None'}")
    print(f"Releases: {', '.join(status.releases) or 'None'}")
    if status.metadata:
        print(f"Updated at: {status.metadata.updated_at}")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        config = _resolve_config(args)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_HARD_FAILURE

    configure_logging(args.debug, Path(config.log_dir) if config.log_dir else None)
    if args.command == "status":
        return run_status(config)
    return run_update(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
