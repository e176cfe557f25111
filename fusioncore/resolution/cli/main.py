"""Command-line interface for the identity fusion resolver."""

import sys
import json
import asyncio
import argparse
from typing import List, Optional

from ...config import ConfigManager
from ...errors import BaseFusionError
from ...logging_config import setup_logging
from ..decision_resolver import DecisionResolver
from ..similarity_scoring import SimilarityScorer
from ..snapshot import load_snapshot, save_pass_result
from .ui_components import UIComponents


def resolve_snapshot(args, ui: UIComponents) -> int:
    """Run one resolution pass over a JSON snapshot."""
    config = ConfigManager(args.config).load()

    try:
        snapshot = load_snapshot(args.snapshot)
    except (OSError, ValueError, KeyError) as e:
        ui.console.print(f"[red]Error loading snapshot:[/red] {e}")
        return 1

    ui.console.print(
        f"🔍 Resolving {len(snapshot.accounts)} account(s) against "
        f"{len(snapshot.identities)} identities"
    )

    resolver = DecisionResolver(config)
    result = asyncio.run(
        resolver.resolve_pass(snapshot.source(), snapshot.records, snapshot.decisions)
    )
    ui.show_pass_result(result)
    ui.show_error_stats(resolver.error_handler.get_error_stats()["error_counts"])

    if args.output:
        save_pass_result(result, args.output)
        ui.console.print(f"💾 Results saved to: {args.output}")

    return 0 if not result.errors else 2


def score_values(args, ui: UIComponents) -> int:
    """Score two values with one or every algorithm."""
    scorer = SimilarityScorer()
    names = [args.algorithm] if args.algorithm else sorted(scorer.algorithms)

    rows = []
    for name in names:
        score, comment = scorer.compare(args.value_a, args.value_b, name)
        rows.append((name, score, comment))

    ui.console.print(ui.create_score_table(args.value_a, args.value_b, rows))
    return 0


def generate_config(args, ui: UIComponents) -> int:
    """Write or print a configuration template."""
    if args.output:
        ConfigManager().save_template(args.output)
        ui.console.print(f"Configuration template saved to: {args.output}")
    else:
        print(json.dumps(ConfigManager.DEFAULT_CONFIG, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fusioncore",
        description="Identity fusion resolver - link accounts to identities and flag duplicates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a resolution pass and save the fused accounts
  fusioncore resolve snapshot.json -c fusion.json -o result.json

  # Compare two names under every algorithm
  fusioncore score "John A. Smith" "John Smith"

  # Generate configuration template
  fusioncore generate-config -o fusion.json
""",
    )
    parser.add_argument("--log-format", choices=["text", "json"], default="text")
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--log-file", help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    resolve_parser = subparsers.add_parser("resolve", help="Run one resolution pass")
    resolve_parser.add_argument("snapshot", help="JSON file with accounts, identities, fused accounts and decisions")
    resolve_parser.add_argument("-c", "--config", help="Path to configuration file")
    resolve_parser.add_argument("-o", "--output", help="Save fused accounts and report to file")

    score_parser = subparsers.add_parser("score", help="Score two values")
    score_parser.add_argument("value_a")
    score_parser.add_argument("value_b")
    score_parser.add_argument("-a", "--algorithm", help="Only this algorithm")

    config_parser = subparsers.add_parser("generate-config", help="Generate configuration template")
    config_parser.add_argument("-o", "--output", help="Save to file (default: print to stdout)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(format=args.log_format, level=args.log_level, log_file=args.log_file)
    ui = UIComponents()

    commands = {
        "resolve": resolve_snapshot,
        "score": score_values,
        "generate-config": generate_config,
    }
    try:
        return commands[args.command](args, ui)
    except KeyboardInterrupt:
        ui.console.print("\n⚠️  Interrupted by user")
        return 1
    except BaseFusionError as e:
        ui.console.print(f"\n❌ Error: {e.message}")
        return 1
    except ValueError as e:
        ui.console.print(f"\n❌ Invalid configuration: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
