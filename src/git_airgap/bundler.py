import datetime
import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from rich.console import Console

from . import manifest
from .audit import AuditLog, format_size, sha256_file
from .branches import checkout_default_branch, normalize_branches
from .config import Config
from .constants import (
    APP_NAME,
    BUNDLE_EXTENSION,
    FOLDER_TIMESTAMP,
    IMPORT_SUFFIX,
    VERIFICATION_LOG_NAME,
)
from .git_wrapper import GitRepo, ensure_git_available
from .models import (
    BundleArtifact,
    RepositoryUnit,
    RunSummary,
    TransferManifest,
    UnitResult,
    UnitStatus,
)
from .walker import discover_units

console = Console()
logger = logging.getLogger(APP_NAME)


def artifact_path(export_dir: Path, unit: RepositoryUnit, root_name: str) -> Path:
    """Returns where a unit's artifact goes, mirroring the unit's path.

    The root unit is stored as `<root_name>.bundle` at the top of the export
    folder; a nested unit at `a/b/c` is stored as `a/b/c.bundle`.
    """
    if unit.is_root:
        return export_dir / f"{root_name}{BUNDLE_EXTENSION}"
    return export_dir / unit.path.parent / f"{unit.path.name}{BUNDLE_EXTENSION}"


def write_bundle(
    repo: GitRepo,
    unit: RepositoryUnit,
    dest: Path,
    preferred: Sequence[str],
) -> BundleArtifact:
    """Bundles a normalized unit and verifies the result.

    All local branches and tags are written with their full history. A unit
    sitting on a detached HEAD (typical for freshly initialized nested units)
    is left on its default branch; otherwise the branch that was checked out
    before is restored.

    Args:
        repo (GitRepo): The unit's repository.
        unit (RepositoryUnit): The unit being bundled.
        dest (Path): The artifact file to create.
        preferred (Sequence[str]): Default branch preference order.

    Returns:
        BundleArtifact: The artifact, with `verified` reflecting
                        `git bundle verify`.

    Raises:
        RuntimeError: If `git bundle create` fails.
    """
    previous = repo.current_branch()

    repo.bundle_create(dest)
    verified = repo.bundle_verify(dest)

    if not previous:
        checkout_default_branch(repo, preferred)
    elif repo.current_branch() != previous:
        repo.checkout(previous)

    return BundleArtifact(
        source_unit_path=unit.path,
        file_location=dest,
        content_hash=sha256_file(dest),
        size_bytes=dest.stat().st_size,
        branch_count=len(repo.local_branches()),
        tag_count=len(repo.tags()),
        commit_count=repo.commit_count(),
        verified=verified,
        remote_url=repo.remote_url(),
    )


def bundle_unit(
    root_path: Path,
    unit: RepositoryUnit,
    export_dir: Path,
    root_name: str,
    config: Config,
) -> UnitResult:
    """Normalizes and bundles one unit, converting failures into a result.

    A nested unit whose artifact would land on the root artifact (a top-level
    unit named like the root) is refused before anything is written.
    """
    dest = artifact_path(export_dir, unit, root_name)
    if not unit.is_root and dest == export_dir / f"{root_name}{BUNDLE_EXTENSION}":
        message = (
            f"artifact {dest.name} would overwrite the root artifact; "
            f"unit '{unit.key}' has the same name as the root repository"
        )
        logger.error(f"Bundling refused for {unit.key}: {message}")
        return UnitResult(path=unit.path, status=UnitStatus.FAILED, message=message)

    try:
        repo = GitRepo(root_path / unit.path)
        report = normalize_branches(
            repo,
            fetch=config.bundle.fetch_remotes,
            skip_normalized=config.bundle.skip_normalized,
        )
        artifact = write_bundle(repo, unit, dest, config.branches.preferred)
    except (RuntimeError, ValueError, OSError) as e:
        logger.error(f"Bundling failed for {unit.key}: {e}")
        return UnitResult(path=unit.path, status=UnitStatus.FAILED, message=str(e))

    notes = []
    if report.skipped_worktree:
        notes.append(f"skipped (worktree): {', '.join(report.skipped_worktree)}")
    if report.diverged:
        notes.append(f"reset to remote (diverged): {', '.join(report.diverged)}")
    if report.fetch_failed:
        notes.append("fetch failed, bundled cached refs")
    if report.shortcut:
        notes.append("normalization skipped (already normalized)")

    status = UnitStatus.VERIFIED if artifact.verified else UnitStatus.FAILED
    if not artifact.verified:
        notes.append("bundle verification failed")
    return UnitResult(
        path=unit.path,
        status=status,
        message="; ".join(notes),
        artifact=artifact,
        branch_count=artifact.branch_count,
        tag_count=artifact.tag_count,
        commit_count=artifact.commit_count,
    )


def bundle_tree(
    config: Config,
    on_unit: Callable[[int, int, UnitResult], None] | None = None,
) -> RunSummary:
    """Bundles a root unit and every nested unit into a new `*_import` folder.

    Args:
        config (Config): Effective configuration; `config.bundle.repo_path`
            names the root unit.
        on_unit (Callable | None): Progress callback, called with
            (number, total, result) after each unit.

    Returns:
        RunSummary: Per-unit results and output locations.

    Raises:
        RuntimeError: If git is not available.
        FileNotFoundError: If the repository path is unset or missing.
        ValueError: If the path is not a git repository.
    """
    ensure_git_available()

    repo_path = config.bundle.repo_path
    if repo_path is None:
        raise FileNotFoundError("No repository path configured to bundle.")
    repo_path = repo_path.resolve()
    if not repo_path.is_dir():
        raise FileNotFoundError(f"Repository path does not exist: {repo_path}")
    GitRepo(repo_path)

    timestamp = datetime.datetime.now().strftime(FOLDER_TIMESTAMP)
    output_dir = (config.bundle.output_dir or Path.cwd()).resolve()
    export_dir = output_dir / f"{timestamp}{IMPORT_SUFFIX}"
    export_dir.mkdir(parents=True, exist_ok=True)

    root_name = repo_path.name
    log = AuditLog(export_dir / VERIFICATION_LOG_NAME)
    summary = RunSummary(
        operation="bundle",
        output_path=export_dir,
        log_path=log.path,
    )
    log.header(
        "Git Bundle Verification Log",
        {
            "Source Repository": str(repo_path),
            "Remote Address": config.bundle.remote_address or "N/A",
            "Export Folder": str(export_dir),
        },
    )

    tree = discover_units(repo_path, init_submodules=config.bundle.init_submodules)
    units = list(tree)
    total = len(units) + len(tree.uninitialized)
    logger.info(
        f"Discovered {len(units)} unit(s) under {repo_path} "
        f"({len(tree.uninitialized)} not initialized)"
    )

    transfer = TransferManifest(
        folder=export_dir,
        timestamp=timestamp,
        root_name=root_name,
        source_path=str(repo_path),
        remote_address=config.bundle.remote_address,
    )

    log.section(f"UNITS ({total} total - including nested)")
    for unit in units:
        result = bundle_unit(repo_path, unit, export_dir, root_name, config)
        summary.results.append(result)
        if result.artifact is not None:
            transfer.artifacts.append(result.artifact)
        log.artifact_entry(len(summary.results), result, export_dir)
        if on_unit:
            on_unit(len(summary.results), total, result)

    for missing in tree.uninitialized:
        result = UnitResult(path=missing, status=UnitStatus.NOT_INITIALIZED)
        summary.results.append(result)
        log.artifact_entry(len(summary.results), result)
        if on_unit:
            on_unit(len(summary.results), total, result)

    manifest.write_metadata(transfer)

    summary.finished = datetime.datetime.now()
    log.summary(
        summary,
        {
            "Total Export Size": format_size(
                sum(a.size_bytes for a in transfer.artifacts)
            ),
            "Bundles Written": str(len(transfer.artifacts)),
        },
    )
    return summary
