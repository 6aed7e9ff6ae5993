#!/usr/bin/env python3
"""
docgov Command Line Interface
=============================

Audit style/token usage in a JSON document and replace one definition with
another behind a checkpoint.

Usage:
    docgov audit DOC.json              Inventory definitions and their usage
    docgov replace DOC.json -s A -t B  Rebind every node using A to B
    docgov config                      Show current configuration

Exit codes:
    0  success
    1  failure
    2  success with warnings (some nodes skipped)
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from .audit_engine import AuditOptions
from .config import DocGovConfig, config_to_dict, load_config, save_config
from .errors import DocGovError, ReplacementAbortedError, classify_error
from .hosts.json_file import JsonDocumentHost
from .logging_utils import OperationLog, configure_logging
from .models import AuditResult, NodeCategory, ProgressEvent, ReplacementResult
from .service import GovernanceService
from .version import get_short_banner, get_version

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_WARNINGS = 2

# =============================================================================
# ANSI Colors
# =============================================================================

class Colors:
    """ANSI color codes for terminal output."""
    RED = '\033[0;31m'
    GREEN = '\033[0;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[0;34m'
    CYAN = '\033[0;36m'
    BOLD = '\033[1m'
    NC = '\033[0m'  # No Color

    @classmethod
    def disable(cls):
        """Disable colors (for non-TTY output)."""
        cls.RED = cls.GREEN = cls.YELLOW = cls.BLUE = ''
        cls.CYAN = cls.BOLD = cls.NC = ''


def print_ok(msg: str) -> None:
    print(f"{Colors.GREEN}✓{Colors.NC} {msg}")


def print_warn(msg: str) -> None:
    print(f"{Colors.YELLOW}⚠{Colors.NC} {msg}")


def print_error(msg: str) -> None:
    print(f"{Colors.RED}✗{Colors.NC} {msg}")


def print_info(msg: str) -> None:
    print(f"{Colors.BLUE}ℹ{Colors.NC} {msg}")


def print_header(msg: str) -> None:
    print(f"\n{Colors.BOLD}{Colors.CYAN}{msg}{Colors.NC}")
    print("=" * len(msg))


def print_progress(event: ProgressEvent) -> None:
    total = f"/{event.total}" if event.total is not None else ""
    failed = f", {event.failed} failed" if event.failed else ""
    print(f"  [{event.phase} {event.index + 1}] {event.processed}{total} ({event.size} in step{failed})",
          file=sys.stderr)


# =============================================================================
# Helpers
# =============================================================================

def _load(args: argparse.Namespace) -> DocGovConfig:
    config = load_config(Path(args.config) if getattr(args, "config", None) else None)
    configure_logging("DEBUG" if getattr(args, "verbose", False) else config.logging.level)
    return config


def _build_service(args: argparse.Namespace, config: DocGovConfig):
    host = JsonDocumentHost(Path(args.document))
    operation_log = OperationLog(Path(config.logging.log_dir), config.logging.events_log)
    return host, GovernanceService(host, config, operation_log=operation_log)


def render_audit(result: AuditResult) -> None:
    print_header(f"Audit {result.audit_id}")
    print(f"Nodes scanned: {result.total_nodes}")

    for category in NodeCategory:
        count = len(result.nodes_in_category(category))
        print(f"  {category.value:<8} {count}")

    print_header("Definitions")
    for definition in sorted(result.definitions, key=lambda d: (-d.usage_count, d.full_name)):
        marker = f"{Colors.YELLOW}unused{Colors.NC}" if definition.usage_count == 0 else ""
        print(f"  {definition.usage_count:>6}  {definition.full_name:<40} "
              f"{definition.kind.value:<6} {definition.source:<12} {definition.id} {marker}".rstrip())

    for warning in result.warnings:
        print_warn(warning)


def render_replacement(result: ReplacementResult) -> None:
    print_header(f"Replaced {result.source_ref} -> {result.target_ref}")
    print_ok(f"{result.updated_count} nodes updated in {len(result.batch_sizes)} batches "
             f"({result.duration_seconds:.2f}s)")
    print_info(f"Checkpoint: {result.checkpoint_title}")
    if result.has_warnings:
        print_warn(f"{len(result.failed_nodes)} nodes skipped:")
        for failure in result.failed_nodes:
            print(f"    {failure.node_id}: {failure.reason}")


# =============================================================================
# Commands
# =============================================================================

def cmd_audit(args: argparse.Namespace) -> int:
    """Audit a document."""
    config = _load(args)
    try:
        host, service = _build_service(args, config)
    except (OSError, ValueError, KeyError) as e:
        print_error(f"Cannot open document: {e}")
        return EXIT_FAILURE

    on_progress = print_progress if args.progress else None
    try:
        result = asyncio.run(service.start_audit(AuditOptions(root_id=args.root), on_progress=on_progress))
    except Exception as e:
        print_error(f"Audit failed ({classify_error(e).value}): {e}")
        print_info("No partial results were kept; retry the audit.")
        return EXIT_FAILURE
    finally:
        service.dispose()

    render_audit(result)

    if args.output:
        output = Path(args.output)
        output.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        print_ok(f"Audit written to {output}")

    return EXIT_OK


def cmd_replace(args: argparse.Namespace) -> int:
    """Replace one definition with another."""
    config = _load(args)
    try:
        host, service = _build_service(args, config)
    except (OSError, ValueError, KeyError) as e:
        print_error(f"Cannot open document: {e}")
        return EXIT_FAILURE

    on_progress = print_progress if args.progress else None

    async def run() -> ReplacementResult:
        node_ids = args.nodes
        if not node_ids:
            audit = await service.start_audit(on_progress=on_progress)
            node_ids = audit.nodes_using(args.source)
            print_info(f"{len(node_ids)} nodes use '{args.source}'")
        return await service.replace(args.source, args.target, node_ids, on_progress=on_progress)

    try:
        result = asyncio.run(run())
    except ReplacementAbortedError as e:
        host.save()
        print_error(f"Replacement stopped: {e.__cause__ or e}")
        print_info(f"{e.updated_count} nodes were updated before the failure.")
        print_warn(e.guidance)
        return EXIT_FAILURE
    except DocGovError as e:
        print_error(f"Replacement not started: {e}")
        return EXIT_FAILURE
    except Exception as e:
        # Host failure before the checkpoint; the document is untouched
        print_error(f"Replacement not started ({classify_error(e).value}): {e}")
        print_info("Retry the audit once the document is reachable.")
        return EXIT_FAILURE
    finally:
        service.dispose()

    host.save()
    render_replacement(result)
    return EXIT_WARNINGS if result.has_warnings else EXIT_OK


def cmd_config(args: argparse.Namespace) -> int:
    """Show or initialise configuration."""
    if args.init:
        path = Path(args.init)
        if path.exists():
            print_error(f"{path} already exists")
            return EXIT_FAILURE
        save_config(DocGovConfig(), path)
        print_ok(f"Default configuration written to {path}")
        return EXIT_OK

    config = _load(args)
    print_header("docgov Configuration")
    print(yaml.dump(config_to_dict(config), default_flow_style=False, sort_keys=False))
    return EXIT_OK


# =============================================================================
# Main
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    if not sys.stdout.isatty():
        Colors.disable()

    parser = argparse.ArgumentParser(
        prog="docgov",
        description=get_short_banner(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  docgov audit brand.json                     Inventory styles and tokens
  docgov audit brand.json --root page-2 -o audit.json
  docgov replace brand.json -s h1-old -t h1   Rebind every node using h1-old
  docgov config --init docgov.yaml            Write a default configuration
        """
    )
    parser.add_argument("-c", "--config", help="Path to docgov.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"docgov {get_version()}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # audit
    sub = subparsers.add_parser("audit", help="Inventory definitions and their usage")
    sub.add_argument("document", help="Document JSON file")
    sub.add_argument("--root", help="Only scan leaves under this container id")
    sub.add_argument("-o", "--output", help="Write the audit result as JSON")
    sub.add_argument("--progress", action="store_true", help="Print progress events")
    sub.set_defaults(func=cmd_audit)

    # replace
    sub = subparsers.add_parser("replace", help="Replace a definition across nodes")
    sub.add_argument("document", help="Document JSON file")
    sub.add_argument("-s", "--source", required=True, help="Definition id to replace")
    sub.add_argument("-t", "--target", required=True, help="Replacement definition id")
    sub.add_argument("-n", "--nodes", nargs="+", help="Node ids (default: every node using --source)")
    sub.add_argument("--progress", action="store_true", help="Print progress events")
    sub.set_defaults(func=cmd_replace)

    # config
    sub = subparsers.add_parser("config", help="Show current configuration")
    sub.add_argument("--init", metavar="PATH", help="Write a default configuration file")
    sub.set_defaults(func=cmd_config)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
