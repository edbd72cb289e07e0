"""Reconstruction of a repository tree from a transfer's bundle artifacts.

Two modes:

* Fresh-create (`export_tree`): clone every artifact into a new
  `*_export` folder.
* Overwrite/resync (`sync_tree`): force an existing tree to match the
  artifacts. This mode is DESTRUCTIVE: local commits and uncommitted changes
  that are not in the artifacts are discarded. The backup snapshot taken
  before any modification is the only way back.

Both modes process parents before children, since a nested unit's directory
lives inside its parent's checkout.
"""

import datetime
import logging
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

from .audit import AuditLog, format_size
from .branches import checkout_default_branch, select_default_branch
from .config import Config
from .constants import (
    APP_NAME,
    BACKUP_TIMESTAMP,
    BUNDLE_NAMESPACE,
    EXPORT_LOG_NAME,
    EXPORT_SUFFIX,
    NETWORK_NOTES_NAME,
    REMOTE_NAME,
)
from .git_wrapper import GitRepo, ensure_git_available
from .manifest import find_import_folder, load_manifest
from .models import (
    BundleArtifact,
    RunSummary,
    TransferManifest,
    UnitResult,
    UnitStatus,
)

logger = logging.getLogger(APP_NAME)

ProgressCallback = Callable[[int, int, UnitResult], None]


def _counts(repo: GitRepo) -> tuple[int, int, int]:
    return len(repo.local_branches()), len(repo.tags()), repo.commit_count()


def _remove_transient_remotes(repo: GitRepo, artifact: BundleArtifact) -> None:
    """Removes remotes that point at the artifact (left behind by `git clone`)."""
    location = str(artifact.file_location)
    for remote in repo.remotes():
        url = repo.remote_url(remote)
        if url and Path(url).resolve() == artifact.file_location.resolve():
            repo.remove_remote(remote)
            logger.debug(f"{repo.path}: removed transient remote '{remote}' ({location})")


def materialize_unit(
    artifact: BundleArtifact, dest: Path, preferred: Sequence[str]
) -> GitRepo:
    """Clones one artifact into `dest` as a self-contained repository.

    Every branch in the artifact becomes a local branch, the default branch
    is checked out (preferred names, then the artifact's HEAD branch, then the
    first available), and the clone's remote is removed.

    Args:
        artifact (BundleArtifact): The artifact to clone.
        dest (Path): Destination directory; must be missing or empty.
        preferred (Sequence[str]): Default branch preference order.

    Returns:
        GitRepo: The materialized repository.

    Raises:
        RuntimeError: If cloning fails.
    """
    repo = GitRepo.clone(artifact.file_location, dest)
    bundle_head = repo.current_branch()

    local = set(repo.local_branches())
    for name, sha in sorted(repo.remote_branches(REMOTE_NAME).items()):
        if name not in local:
            repo.create_branch(name, sha)

    checkout_default_branch(repo, preferred, current=bundle_head or None)
    _remove_transient_remotes(repo, artifact)
    return repo


def resync_unit(
    artifact: BundleArtifact, repo: GitRepo, preferred: Sequence[str]
) -> str:
    """Forces an existing unit to match an artifact.

    The artifact's heads are fetched into a temporary namespace (tags are
    force-updated in place), the default branch is reset to the artifact's
    tip and checked out with local changes discarded, every other artifact
    branch is moved to its tip unless it is checked out in another worktree,
    and the temporary refs are deleted.

    The default branch is the first preferred name in the artifact, else its
    lexicographically-first branch; the branch the destination happens to be
    on is not considered.

    Args:
        artifact (BundleArtifact): The authoritative artifact.
        repo (GitRepo): The existing unit.
        preferred (Sequence[str]): Default branch preference order.

    Returns:
        str: The branch now checked out.

    Raises:
        RuntimeError: If the artifact has no branches or a git step fails.
    """
    repo.fetch_bundle(artifact.file_location, BUNDLE_NAMESPACE)
    try:
        prefix = f"{BUNDLE_NAMESPACE}/"
        heads = {
            ref[len(prefix) :]: ref
            for ref in repo.list_refs(prefix)
            if ref[len(prefix) :] != "HEAD"
        }
        branch = select_default_branch(heads, preferred)
        if branch is None:
            raise RuntimeError(f"{artifact.file_location.name} contains no branches")
        if branch not in preferred:
            logger.warning(
                f"{repo.path}: none of {', '.join(preferred)} in bundle, "
                f"syncing '{branch}'"
            )

        repo.force_checkout(branch, heads[branch])

        checked_out = repo.worktree_branches()
        for name, ref in sorted(heads.items()):
            if name == branch:
                continue
            if name in checked_out:
                logger.info(f"{repo.path}: skipping branch '{name}' (used by worktree)")
                continue
            repo.create_branch(name, ref, force=True)
    finally:
        for ref in repo.list_refs(f"{BUNDLE_NAMESPACE}/"):
            repo.delete_ref(ref)

    _remove_transient_remotes(repo, artifact)
    return branch


def _is_empty_dir(path: Path) -> bool:
    return path.is_dir() and not any(path.iterdir())


def _declared_missing(
    transfer: TransferManifest, unit_path: Path, repo: GitRepo
) -> list[Path]:
    """Nested units declared by `repo` that have no artifact in the transfer."""
    missing = []
    for sub in repo.declared_submodules():
        child = unit_path / sub
        if transfer.get(child) is None:
            missing.append(child)
    return missing


def _process_artifacts(
    transfer: TransferManifest,
    dest_root: Path,
    config: Config,
    log: AuditLog,
    summary: RunSummary,
    resync: bool,
    on_unit: ProgressCallback | None,
) -> None:
    preferred = config.branches.preferred
    ordered = transfer.ordered()
    not_found = {p.parts: p for p in transfer.missing}
    total = len(ordered) + len(not_found)

    def record(result: UnitResult) -> None:
        summary.results.append(result)
        log.unit_entry(len(summary.results), result)
        if on_unit:
            on_unit(len(summary.results), total, result)

    for artifact in ordered:
        unit_path = artifact.source_unit_path
        dest = dest_root / unit_path
        try:
            if resync and (dest / ".git").exists():
                repo = GitRepo(dest)
                branch = resync_unit(artifact, repo, preferred)
                status = UnitStatus.SYNCED
                message = f"reset to bundle '{branch}'"
            elif dest.exists() and not _is_empty_dir(dest):
                record(
                    UnitResult(
                        path=unit_path,
                        status=UnitStatus.NOT_A_REPOSITORY,
                        message=f"{dest} exists and is not a git repository",
                        artifact=artifact,
                    )
                )
                continue
            else:
                repo = materialize_unit(artifact, dest, preferred)
                status = UnitStatus.CLONED
                message = "cloned from bundle"
            branches, tags, commits = _counts(repo)
        except (RuntimeError, ValueError, OSError) as e:
            logger.error(f"Failed to materialize {artifact.key}: {e}")
            record(
                UnitResult(
                    path=unit_path,
                    status=UnitStatus.FAILED,
                    message=str(e),
                    artifact=artifact,
                )
            )
            continue

        record(
            UnitResult(
                path=unit_path,
                status=status,
                message=message,
                artifact=artifact,
                branch_count=branches,
                tag_count=tags,
                commit_count=commits,
            )
        )

        for child in _declared_missing(transfer, unit_path, repo):
            if child.parts not in not_found:
                not_found[child.parts] = child
                total += 1

    for missing in not_found.values():
        logger.warning(f"No artifact for declared unit: {missing.as_posix()}")
        record(
            UnitResult(
                path=missing,
                status=UnitStatus.NOT_FOUND,
                message="no bundle artifact in the transfer",
            )
        )


def _resolve_import_folder(folder: Path | None) -> Path:
    if folder is not None:
        return folder.resolve()
    detected = find_import_folder(Path.cwd())
    if detected is None:
        raise FileNotFoundError(
            "No *_import folder found in the current directory. "
            "Pass --import-folder or set import_folder in the config."
        )
    logger.info(f"Auto-detected import folder: {detected.name}")
    return detected.resolve()


def write_network_notes(path: Path, repo_path: Path) -> None:
    """Writes instructions for reconnecting an air-gapped tree to a remote."""
    path.write_text(
        f"""\
=================================================================
Network Connectivity Notes
=================================================================
Generated: {datetime.datetime.now():%a %b %d %H:%M:%S %Y}

CURRENT CONFIGURATION (Air-gapped):
-----------------------------------------------------------------
The repository has been cloned from git bundles without remote
URLs configured. This is intentional for air-gapped networks.

FUTURE NETWORK CONNECTIVITY:
-----------------------------------------------------------------
If/when network connectivity becomes available between networks,
you can configure remote URLs for the repositories:

For the root repository:
  cd {repo_path}
  git remote add origin <URL>

For nested repositories, you have two options:

Option 1: Manually configure each nested repository remote
  cd {repo_path}/<submodule-path>
  git remote add origin <URL>

Option 2: Update .gitmodules and sync
  cd {repo_path}
  # Edit .gitmodules to restore original URLs
  git submodule sync
  git submodule update --init --recursive --remote

VERIFYING INTEGRITY:
-----------------------------------------------------------------
  cd {repo_path}
  git log --oneline -10
  git submodule status

PUSHING TO REMOTE (when connectivity available):
-----------------------------------------------------------------
  cd {repo_path}
  git remote add origin <URL>
  git push -u origin --all
  git push -u origin --tags

  git submodule foreach --recursive 'git push -u origin --all'
  git submodule foreach --recursive 'git push -u origin --tags'
=================================================================
""",
        encoding="utf-8",
    )


def export_tree(
    config: Config, on_unit: ProgressCallback | None = None
) -> RunSummary:
    """Recreates a repository tree from a transfer in a new `*_export` folder.

    Args:
        config (Config): Effective configuration (`config.export`).
        on_unit (ProgressCallback | None): Called after each unit.

    Returns:
        RunSummary: Per-unit results; `output_path` is the materialized root.

    Raises:
        RuntimeError: If git is not available.
        FileNotFoundError: If no import folder or artifacts can be found.
        FileExistsError: If the destination exists and is not empty.
    """
    ensure_git_available()
    folder = _resolve_import_folder(config.export.import_folder)
    transfer = load_manifest(folder)

    output_dir = (config.export.output_dir or Path.cwd()).resolve()
    export_dir = output_dir / f"{transfer.timestamp}{EXPORT_SUFFIX}"
    dest_root = export_dir / transfer.root_name
    if dest_root.exists() and not _is_empty_dir(dest_root):
        raise FileExistsError(f"Destination already exists: {dest_root}")
    export_dir.mkdir(parents=True, exist_ok=True)

    log = AuditLog(export_dir / EXPORT_LOG_NAME)
    summary = RunSummary(operation="export", output_path=dest_root, log_path=log.path)
    log.header(
        "Git Export Log",
        {
            "Import Folder": str(folder),
            "Export Folder": str(export_dir),
            "Default Branch": config.branches.default_branch,
        },
    )
    log.section(f"UNITS ({len(transfer.artifacts)} bundle(s))")

    _process_artifacts(transfer, dest_root, config, log, summary, False, on_unit)

    try:
        write_network_notes(export_dir / NETWORK_NOTES_NAME, dest_root)
    except OSError as e:
        logger.warning(f"Could not write {NETWORK_NOTES_NAME}: {e}")

    summary.finished = datetime.datetime.now()
    log.summary(
        summary,
        {
            "Root Repository": transfer.root_name,
            "Repository Path": str(dest_root),
            "Bundle Size": format_size(sum(a.size_bytes for a in transfer.artifacts)),
        },
    )
    return summary


def create_backup(repo_path: Path, backup_dir: Path | None = None) -> Path:
    """Copies a tree to `<backup_dir>/<name>_backup_<timestamp>`.

    The copy completes before it returns; symlinks are copied as links.

    Returns:
        Path: The backup location.
    """
    stamp = datetime.datetime.now().strftime(BACKUP_TIMESTAMP)
    parent = backup_dir or repo_path.parent
    backup_path = parent / f"{repo_path.name}_backup_{stamp}"
    parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(repo_path, backup_path, symlinks=True)
    return backup_path


def sync_tree(
    config: Config, on_unit: ProgressCallback | None = None
) -> RunSummary:
    """Overwrites an existing tree so every unit matches the transfer.

    DESTRUCTIVE: the artifacts are authoritative. Unless backups are disabled
    the whole tree is copied aside first.

    Args:
        config (Config): Effective configuration (`config.sync`).
        on_unit (ProgressCallback | None): Called after each unit.

    Returns:
        RunSummary: Per-unit results, with the backup location.

    Raises:
        RuntimeError: If git is not available.
        FileNotFoundError: If the destination or the transfer is missing.
        ValueError: If the destination is not a git repository.
    """
    ensure_git_available()

    repo_path = config.sync.repo_path
    if repo_path is None:
        raise FileNotFoundError("No destination repository configured to sync.")
    repo_path = repo_path.resolve()
    if not repo_path.is_dir():
        raise FileNotFoundError(f"Repository path does not exist: {repo_path}")
    GitRepo(repo_path)

    folder = _resolve_import_folder(config.sync.import_folder)
    transfer = load_manifest(folder)

    stamp = datetime.datetime.now().strftime(BACKUP_TIMESTAMP)
    log_parent = config.sync.backup_dir or repo_path.parent
    log_parent.mkdir(parents=True, exist_ok=True)
    log = AuditLog(log_parent / f"{repo_path.name}_sync_{stamp}.txt")
    summary = RunSummary(operation="sync", output_path=repo_path, log_path=log.path)

    if config.sync.create_backup:
        logger.info(f"Creating backup of {repo_path}")
        summary.backup_path = create_backup(repo_path, config.sync.backup_dir)
        logger.info(f"Backup created at {summary.backup_path}")
    else:
        logger.warning(
            "Backup disabled: local changes overwritten by this sync cannot be recovered"
        )

    log.header(
        "Git Sync Log",
        {
            "Repository": str(repo_path),
            "Import Folder": str(folder),
            "Default Branch": config.branches.default_branch,
            "Backup": str(summary.backup_path) if summary.backup_path else "DISABLED",
        },
    )
    log.section(f"UNITS ({len(transfer.artifacts)} bundle(s))")

    _process_artifacts(transfer, repo_path, config, log, summary, True, on_unit)

    summary.finished = datetime.datetime.now()
    log.summary(summary, {"Repository Path": str(repo_path)})
    return summary
