#!/usr/bin/env python3
"""Command-line interface for repomap.

Subcommands:
    - repomap init: Build the repo map with a full scan
    - repomap update: Refresh the map (incremental, or --full)
    - repomap status: Show the map summary and whether it is stale
    - repomap mark-stale: Flag the map as out of date (used by the git hook)
    - repomap hubs: Show the most imported and most central files
    - repomap install-hook: Install a post-commit hook running mark-stale

Example:
    $ repomap init /my/project
    $ repomap update
    $ repomap --json status
    $ repomap hubs --top 5
"""

import argparse
import asyncio
import json
import logging
import sys

from . import __version__, cache
from .colors import get_colors
from .config import load_config
from .exceptions import ConfigError
from .git import install_stale_hook
from .graph import DEFAULT_HUB_THRESHOLD, DependencyGraph
from .repo_map import NO_MAP_MESSAGE, init, status, update

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def _fail(args: argparse.Namespace, error: str, install_suggestion: str = None) -> int:
    c = get_colors(no_color=args.no_color)
    print(f"{c.error('✗')} {error}", file=sys.stderr)
    if install_suggestion:
        print(f"\n{install_suggestion}", file=sys.stderr)
    return 1


def add_init_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    parser.add_argument("--force", action="store_true", help="Rebuild even if a map exists")
    parser.add_argument(
        "--languages",
        nargs="+",
        metavar="LANG",
        help="Languages to scan (default: detected)",
    )


def run_init(args: argparse.Namespace) -> int:
    result = asyncio.run(init(args.path, force=args.force, languages=args.languages))
    if args.json:
        _print_json(result.to_dict())
        return 0 if result.success else 1
    if not result.success:
        return _fail(args, result.error, result.install_suggestion)

    c = get_colors(no_color=args.no_color)
    summary = result.summary
    print(f"{c.success('✓')} Repo map created: {c.cyan(str(cache.get_map_path(args.path)))}")
    print(f"  Files: {c.green(str(summary.files))}")
    print(f"  Symbols: {c.green(str(summary.symbols))}")
    print(f"  Languages: {', '.join(summary.languages)}")
    print(f"  Duration: {c.dim(f'{summary.duration}ms')}")
    errors = result.repo_map.stats.errors
    if errors:
        print(f"  Skipped: {c.yellow(str(len(errors)))} file(s) could not be scanned")
    return 0


def add_update_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    parser.add_argument("--full", action="store_true", help="Rebuild from scratch")


def run_update(args: argparse.Namespace) -> int:
    result = asyncio.run(update(args.path, full=args.full))
    if args.json:
        _print_json(result.to_dict())
        return 0 if result.success else 1
    if not result.success:
        code = _fail(args, result.error, result.install_suggestion)
        if result.needs_full_rebuild:
            print("Run 'repomap update --full' to rebuild the map.", file=sys.stderr)
        return code

    c = get_colors(no_color=args.no_color)
    if result.summary is not None:
        print(f"{c.success('✓')} Repo map rebuilt: {result.summary.files} files, {result.summary.symbols} symbols")
        return 0

    changes = result.changes
    if changes.total == 0:
        print(f"{c.success('✓')} Repo map is up to date")
        return 0
    print(f"{c.success('✓')} Repo map updated")
    print(f"  Added: {c.green(str(changes.added))}")
    print(f"  Modified: {c.yellow(str(changes.modified))}")
    print(f"  Deleted: {c.magenta(str(changes.deleted))}")
    print(f"  Renamed: {c.cyan(str(changes.renamed))}")
    print(f"  Rescanned: {c.dim(str(changes.updated))}")
    return 0


def add_status_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")


def run_status(args: argparse.Namespace) -> int:
    result = status(args.path)
    if args.json:
        _print_json(result.to_dict())
        return 0 if result.exists else 1
    if not result.exists:
        return _fail(args, result.message or NO_MAP_MESSAGE)

    c = get_colors(no_color=args.no_color)
    summary = result.status
    staleness = result.staleness
    if summary is not None:
        print(f"{c.bold('Repo map')} {c.cyan(str(cache.get_map_path(args.path)))}")
        print(f"  Generated: {summary.generated}")
        print(f"  Updated: {summary.updated}")
        if summary.commit:
            print(f"  Commit: {summary.commit[:12]} ({summary.branch or 'detached'})")
        print(f"  Files: {summary.files}  Symbols: {summary.symbols}")
        print(f"  Languages: {', '.join(summary.languages) or '-'}")

    if staleness.is_stale:
        print(f"{c.warning('!')} Stale: {staleness.reason}")
        if staleness.suggest_full_rebuild:
            print("  Run 'repomap update --full' to rebuild the map.")
        else:
            print("  Run 'repomap update' to refresh the map.")
    else:
        print(f"{c.success('✓')} Up to date")
    return 0


def add_mark_stale_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")


def run_mark_stale(args: argparse.Namespace) -> int:
    marker = cache.mark_stale(args.path)
    if args.json:
        _print_json({"marked": True, "path": str(marker)})
    else:
        c = get_colors(no_color=args.no_color)
        print(f"{c.success('✓')} Marked repo map stale: {c.cyan(str(marker))}")
    return 0


def add_hubs_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    parser.add_argument("--top", type=int, default=10, help="Number of central files to show (default: 10)")
    parser.add_argument(
        "--threshold",
        type=int,
        default=DEFAULT_HUB_THRESHOLD,
        help=f"Minimum importers for a hub (default: {DEFAULT_HUB_THRESHOLD})",
    )


def run_hubs(args: argparse.Namespace) -> int:
    repo_map = cache.load(args.path)
    if repo_map is None:
        return _fail(args, NO_MAP_MESSAGE)

    graph = DependencyGraph.from_repo_map(repo_map)
    if args.json:
        _print_json(graph.to_dict(top_n=args.top))
        return 0

    c = get_colors(no_color=args.no_color)
    hubs = graph.get_hub_files(args.threshold)
    print(c.bold(f"Hub files (imported by {args.threshold}+ files)"))
    for path in hubs:
        print(f"  {c.cyan(path)}  {c.dim(str(len(graph.get_importers(path))) + ' importers')}")
    if not hubs:
        print(c.dim("  none"))

    print(c.bold("Most central files"))
    for path, score in graph.get_critical_paths(args.top):
        print(f"  {score:.4f}  {c.cyan(path)}")
    return 0


def add_install_hook_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")


def run_install_hook(args: argparse.Namespace) -> int:
    hook = install_stale_hook(args.path)
    if hook is None:
        return _fail(args, f"Not a git repository: {args.path}")
    if args.json:
        _print_json({"installed": True, "path": str(hook)})
    else:
        c = get_colors(no_color=args.no_color)
        print(f"{c.success('✓')} Installed post-commit hook: {c.cyan(str(hook))}")
    return 0


COMMANDS = {
    "init": (add_init_arguments, run_init, "Build the repo map with a full scan"),
    "update": (add_update_arguments, run_update, "Refresh the repo map"),
    "status": (add_status_arguments, run_status, "Show the map summary and staleness"),
    "mark-stale": (add_mark_stale_arguments, run_mark_stale, "Flag the map as out of date"),
    "hubs": (add_hubs_arguments, run_hubs, "Show hub and central files"),
    "install-hook": (add_install_hook_arguments, run_install_hook, "Install a post-commit stale hook"),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repomap",
        description="Incremental, git-aware structural map of a repository",
        epilog="Run 'repomap <command> --help' for more information on a command.",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("--verbose", action="store_true", help="Log progress")
    parser.add_argument("--debug", action="store_true", help="Log every subprocess call")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    for name, (add_arguments, _, help_text) in COMMANDS.items():
        add_arguments(subparsers.add_parser(name, help=help_text, description=help_text))
    return parser


def main(argv=None) -> int:
    """Entry point for the ``repomap`` console script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        load_config(args.path)
    except ConfigError as e:
        return _fail(args, f"Invalid configuration: {e}")

    _, run, _ = COMMANDS[args.command]
    logger.debug("Running %s for %s", args.command, args.path)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
