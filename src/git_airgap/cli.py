import argparse
import logging
import sys
from dataclasses import fields
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from . import bundler, materializer, verify
from .audit import format_elapsed
from .config import Config
from .constants import APP_NAME, CONFIG_FILE, LOG_FILE, STATE_DIR
from .models import RunSummary, UnitResult

logger = logging.getLogger(APP_NAME)
console = Console()

_FATAL_ERRORS = (RuntimeError, ValueError, OSError)


def setup_logging(verbose: bool = False, max_log_size: int = 5 * 1024 * 1024) -> None:
    """Configures the diagnostic log.

    Warnings (everything with `verbose`) go to stderr; the rotating state log
    receives INFO and above.

    Args:
        verbose (bool): Show debug output, including every git invocation.
        max_log_size (int): Bytes before the state log rotates.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    try:
        STATE_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_log_size,
            backupCount=5,
        )
    except OSError as e:
        logger.warning(f"Diagnostic log disabled ({LOG_FILE}): {e}")
        return
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def _progress(status):
    """Builds an `on_unit` callback that reports into a `console.status`."""

    def on_unit(number: int, total: int, result: UnitResult) -> None:
        if result.status.ok:
            color = "green"
        elif result.status.skipped:
            color = "yellow"
        else:
            color = "red"
        console.print(
            f"  [{color}]{result.status.value}[/{color}] "
            f"[cyan]{result.key}[/cyan] [dim]({number}/{total})[/dim]"
        )
        if result.message and not result.status.ok:
            console.print(f"      [dim]{result.message}[/dim]")
        status.update(f"[bold blue]Processed {number}/{total} units...")

    return on_unit


def print_summary(summary: RunSummary) -> None:
    """Renders the end-of-run summary, whatever the per-unit outcomes were."""
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Units Processed", str(summary.total))
    table.add_row("Succeeded", f"[green]{summary.succeeded}[/green]")
    table.add_row("Skipped", f"[yellow]{summary.skipped}[/yellow]")
    table.add_row(
        "Failed", f"[red]{summary.failed}[/red]" if summary.failed else "0"
    )
    table.add_row("Output", f"[cyan]{summary.output_path}[/cyan]")
    table.add_row("Log", f"[cyan]{summary.log_path}[/cyan]")
    if summary.operation == "sync":
        table.add_row(
            "Backup",
            f"[cyan]{summary.backup_path}[/cyan]"
            if summary.backup_path
            else "[yellow]DISABLED[/yellow]",
        )
    table.add_row("Time Taken", format_elapsed(summary.elapsed))

    style = "green" if not summary.failed else "red"
    console.print(
        Panel(
            table,
            title=f"{summary.operation.capitalize()} Summary",
            border_style=style,
            expand=False,
        )
    )


def run_bundle(args: argparse.Namespace, config: Config) -> RunSummary:
    if args.repo:
        config.bundle.repo_path = Path(args.repo)
    elif config.bundle.repo_path is None:
        config.bundle.repo_path = Path.cwd()
    if args.remote:
        config.bundle.remote_address = args.remote
    if args.output:
        config.bundle.output_dir = Path(args.output)
    if args.no_fetch:
        config.bundle.fetch_remotes = False
    if args.skip_normalized:
        config.bundle.skip_normalized = True

    console.print(f"Bundling [cyan]{config.bundle.repo_path}[/cyan]")
    with console.status("[bold blue]Discovering units...", spinner="dots") as status:
        return bundler.bundle_tree(config, on_unit=_progress(status))


def run_export(args: argparse.Namespace, config: Config) -> RunSummary:
    if args.import_folder:
        config.export.import_folder = Path(args.import_folder)
    if args.output:
        config.export.output_dir = Path(args.output)
    if args.branch:
        config.branches.default_branch = args.branch

    with console.status("[bold blue]Materializing units...", spinner="dots") as status:
        return materializer.export_tree(config, on_unit=_progress(status))


def run_sync(args: argparse.Namespace, config: Config) -> RunSummary | None:
    if args.repo:
        config.sync.repo_path = Path(args.repo)
    if args.import_folder:
        config.sync.import_folder = Path(args.import_folder)
    if args.branch:
        config.branches.default_branch = args.branch
    if args.no_backup:
        config.sync.create_backup = False

    if config.sync.repo_path is None:
        raise ValueError("No repository to sync. Pass --repo or set [sync].repo_path.")

    console.print(
        Panel(
            f"Every unit under [cyan]{config.sync.repo_path}[/cyan] will be reset to "
            "the bundled state.\nLocal commits and uncommitted changes not present "
            "in the bundles will be lost.\n"
            + (
                "A backup copy is made first."
                if config.sync.create_backup
                else "[bold red]Backup is DISABLED.[/bold red]"
            ),
            title="Overwrite Mode",
            border_style="yellow",
            expand=False,
        )
    )
    if not args.yes and not Confirm.ask("Continue?", default=False):
        console.print("Aborted.", style="dim")
        return None

    with console.status("[bold blue]Creating backup...", spinner="dots") as status:
        return materializer.sync_tree(config, on_unit=_progress(status))


def run_verify(args: argparse.Namespace) -> bool:
    """Prints the per-unit comparison and returns whether every unit matches."""
    source, dest = Path(args.source).resolve(), Path(args.dest).resolve()
    with console.status("[bold blue]Comparing trees...", spinner="dots"):
        comparisons = verify.compare_trees(source, dest)

    table = Table(title="Transfer Verification")
    table.add_column("Unit", style="cyan")
    table.add_column("Branches", justify="right")
    table.add_column("Tags", justify="right")
    table.add_column("Remotes", justify="right")
    table.add_column("Result")

    for c in comparisons:
        key = c.path.as_posix()
        if not c.present:
            table.add_row(
                key,
                str(c.source_branches),
                str(c.source_tags),
                "-",
                "[red]MISSING[/red]",
            )
            continue
        table.add_row(
            key,
            f"{c.source_branches} / {c.dest_branches}",
            f"{c.source_tags} / {c.dest_tags}",
            str(len(c.dest_remotes or [])),
            "[green]OK[/green]" if c.matches else "[red]MISMATCH[/red]",
        )
    console.print(table)

    ok = all(c.matches for c in comparisons)
    if ok:
        console.print(f"[bold green]✔ All {len(comparisons)} units match.[/bold green]")
    else:
        failed = sum(1 for c in comparisons if not c.matches)
        console.print(
            f"[bold red]✘ {failed} of {len(comparisons)} units differ.[/bold red]"
        )
    return ok


def show_config(config: Config) -> None:
    """Displays the effective configuration after all files are merged."""
    table = Table(title="Effective Configuration")
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Value", style="yellow")

    for section in fields(config):
        values = getattr(config, section.name)
        first = True
        for f in fields(values):
            value = getattr(values, f.name)
            table.add_row(section.name if first else "", f.name, repr(value))
            first = False

    console.print(table)
    console.print(f"[dim]Global config: {CONFIG_FILE}[/dim]")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Git Airgap Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row("bundle", "repo_path", "path", "cwd", "Root repository to bundle.")
    table.add_row(
        "",
        "remote_address",
        "str",
        '""',
        "Remote the tree came from (recorded in the logs only).",
    )
    table.add_row(
        "", "output_dir", "path", "cwd", "Where the *_import folder is created."
    )
    table.add_row(
        "", "fetch_remotes", "bool", "true", "Fetch from origin before bundling."
    )
    table.add_row(
        "",
        "init_submodules",
        "bool",
        "true",
        "Initialize declared nested units that are not checked out.",
    )
    table.add_row(
        "",
        "skip_normalized",
        "bool",
        "false",
        "Skip branch normalization for units with more than one local branch.",
    )

    table.add_row(
        "export",
        "import_folder",
        "path",
        "latest *_import",
        "Transfer folder to materialize.",
    )
    table.add_row(
        "", "output_dir", "path", "cwd", "Where the *_export folder is created."
    )

    table.add_row("sync", "repo_path", "path", "None", "Existing tree to overwrite.")
    table.add_row(
        "", "import_folder", "path", "latest *_import", "Transfer folder to apply."
    )
    table.add_row(
        "", "create_backup", "bool", "true", "Copy the tree aside before syncing."
    )
    table.add_row(
        "", "backup_dir", "path", "parent of repo", "Where backups and logs go."
    )

    table.add_row(
        "branches",
        "default_branch",
        "str",
        '"main"',
        "Branch checked out when it exists.",
    )
    table.add_row(
        "",
        "fallbacks",
        "list",
        '["master", "develop"]',
        "Further preferred branch names, in order.",
    )

    table.add_row(
        "limits",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size of the diagnostic log before rotation.",
    )

    console.print(table)


def main() -> None:
    """Main entry point for the git-airgap CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Move a git repository and all nested submodules across an "
        "air gap using git bundles.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug output"
    )
    subparsers = parser.add_subparsers(dest="command")

    bundle_parser = subparsers.add_parser(
        "bundle", help="Bundle a repository tree into a timestamped *_import folder"
    )
    bundle_parser.add_argument("--repo", help="Root repository (default: cwd)")
    bundle_parser.add_argument(
        "--remote", help="Remote address to record in the logs"
    )
    bundle_parser.add_argument("--output", help="Parent directory of the output")
    bundle_parser.add_argument(
        "--no-fetch", action="store_true", help="Do not fetch remotes first"
    )
    bundle_parser.add_argument(
        "--skip-normalized",
        action="store_true",
        help="Skip units that already have several local branches",
    )

    export_parser = subparsers.add_parser(
        "export", help="Recreate a repository tree from an *_import folder"
    )
    export_parser.add_argument(
        "--import-folder", help="Transfer folder (default: latest in cwd)"
    )
    export_parser.add_argument("--output", help="Parent directory of the output")
    export_parser.add_argument("--branch", help="Preferred default branch")

    sync_parser = subparsers.add_parser(
        "sync", help="Overwrite an existing tree with an *_import folder"
    )
    sync_parser.add_argument("--repo", help="Existing repository tree to overwrite")
    sync_parser.add_argument(
        "--import-folder", help="Transfer folder (default: latest in cwd)"
    )
    sync_parser.add_argument("--branch", help="Preferred default branch")
    sync_parser.add_argument(
        "--no-backup", action="store_true", help="Do not copy the tree first"
    )
    sync_parser.add_argument(
        "--yes", "-y", action="store_true", help="Do not ask for confirmation"
    )

    verify_parser = subparsers.add_parser(
        "verify", help="Compare a source tree with its materialized copy"
    )
    verify_parser.add_argument("source", help="Bundled source tree")
    verify_parser.add_argument("dest", help="Materialized tree")

    config_parser = subparsers.add_parser(
        "config", help="Show the effective configuration or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    config = Config.load(Path.cwd())
    setup_logging(args.verbose, config.limits.max_log_size)

    if args.command == "config":
        if args.list:
            show_config_reference()
        else:
            show_config(config)
        return

    summary = None
    try:
        if args.command == "bundle":
            summary = run_bundle(args, config)
        elif args.command == "export":
            summary = run_export(args, config)
        elif args.command == "sync":
            summary = run_sync(args, config)
        elif args.command == "verify":
            if not run_verify(args):
                sys.exit(1)
            return
    except _FATAL_ERRORS as e:
        logger.debug(f"{args.command} aborted", exc_info=True)
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)

    if summary is not None:
        print_summary(summary)


if __name__ == "__main__":
    main()
