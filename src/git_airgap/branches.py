"""Branch normalization and default branch selection.

`git bundle` only captures local refs, while a unit cloned the ordinary way
(or initialized as a submodule) usually exposes most of its branches as
remote-tracking refs only. `normalize_branches` turns those into local
branches before bundling. `select_default_branch` is the single rule used on
both sides of a transfer to decide which branch to check out.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .constants import APP_NAME, REMOTE_NAME
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


def select_default_branch(
    branches: Iterable[str],
    preferred: Sequence[str],
    current: str | None = None,
) -> str | None:
    """Chooses the branch to check out.

    Order: the first `preferred` name that exists, then `current` (the branch
    the repository or artifact already points at) if it exists, then the
    lexicographically-first branch.

    Args:
        branches (Iterable[str]): Available local branch names.
        preferred (Sequence[str]): Conventional names, most preferred first.
        current (str | None): The currently checked-out branch, if any.

    Returns:
        str | None: The selected branch, or None if there are no branches.
    """
    available = set(branches)
    if not available:
        return None
    for name in preferred:
        if name in available:
            return name
    if current and current in available:
        return current
    return sorted(available)[0]


def checkout_default_branch(
    repo: GitRepo, preferred: Sequence[str], current: str | None = None
) -> str | None:
    """Checks out the default branch of `repo`.

    Args:
        repo (GitRepo): The repository to update.
        preferred (Sequence[str]): Conventional names, most preferred first.
        current (str | None): Fallback candidate when no preferred name exists.
            Defaults to the branch currently checked out.

    Returns:
        str | None: The branch now checked out, or None if the repository has
                    no local branches.
    """
    branches = repo.local_branches()
    head = repo.current_branch()
    selected = select_default_branch(branches, preferred, current or head)

    if selected is None:
        logger.warning(f"{repo.path}: no local branches to check out")
        return None

    if not any(name in branches for name in preferred):
        logger.warning(
            f"{repo.path}: none of {', '.join(preferred)} exist, "
            f"using '{selected}'"
        )

    if selected != head:
        repo.checkout(selected)
        logger.info(f"{repo.path}: checked out '{selected}'")
    return selected


@dataclass
class NormalizeReport:
    """What `normalize_branches` did to one unit."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    skipped_worktree: list[str] = field(default_factory=list)
    diverged: list[str] = field(default_factory=list)
    fetch_failed: bool = False
    shortcut: bool = False


def normalize_branches(
    repo: GitRepo,
    fetch: bool = True,
    skip_normalized: bool = False,
    remote: str = REMOTE_NAME,
) -> NormalizeReport:
    """Gives every remote-tracking branch a local branch at the same commit.

    Existing local branches are never deleted or renamed, but every one with a
    remote counterpart ends at the remote tip. A branch that has diverged is
    moved as well; its previous tip is logged and stays reachable through the
    reflog. Branches checked out in any worktree cannot be moved by
    `git branch -f` and are skipped.

    Args:
        repo (GitRepo): The unit to normalize.
        fetch (bool): Fetch all remotes (with tags) first, when `remote` exists.
        skip_normalized (bool): Skip units that already have more than one
            local branch, assuming an earlier pass normalized them.
        remote (str): The remote whose tracking branches are converted.

    Returns:
        NormalizeReport: The branches created, updated and skipped.
    """
    report = NormalizeReport()
    local = set(repo.local_branches())

    if skip_normalized and len(local) > 1:
        logger.warning(
            f"{repo.path}: {len(local)} local branches present, "
            "skipping normalization (skip_normalized is enabled)"
        )
        report.shortcut = True
        return report

    has_remote = repo.remote_url(remote) is not None
    if has_remote and fetch:
        try:
            repo.fetch_all()
        except RuntimeError as e:
            logger.warning(f"{repo.path}: fetch failed, using cached refs: {e}")
            report.fetch_failed = True

    remote_branches = repo.remote_branches(remote) if has_remote else {}
    checked_out = repo.worktree_branches() if remote_branches else set()

    for name, sha in sorted(remote_branches.items()):
        if name not in local:
            repo.create_branch(name, sha)
            report.created.append(name)
            continue

        local_sha = repo.rev_parse(f"refs/heads/{name}")
        if local_sha == sha:
            continue
        if name in checked_out:
            logger.info(f"{repo.path}: skipping branch '{name}' (used by worktree)")
            report.skipped_worktree.append(name)
            continue
        if local_sha and repo.is_ancestor(local_sha, sha):
            repo.create_branch(name, sha, force=True)
            report.updated.append(name)
        else:
            logger.warning(
                f"{repo.path}: local '{name}' has diverged from {remote}/{name}, "
                f"moving it to the remote tip (previous tip {local_sha})"
            )
            repo.create_branch(name, sha, force=True)
            report.diverged.append(name)

    if not local and not report.created:
        head = repo.rev_parse("HEAD")
        if head:
            for fallback in ("main", "master"):
                try:
                    repo.create_branch(fallback, head)
                    report.created.append(fallback)
                    logger.warning(
                        f"{repo.path}: no branches found, created '{fallback}' at HEAD"
                    )
                    break
                except RuntimeError as e:
                    logger.debug(f"Could not create '{fallback}': {e}")

    if report.created or report.updated or report.diverged:
        logger.info(
            f"{repo.path}: {len(report.created)} branch(es) created, "
            f"{len(report.updated)} fast-forwarded, {len(report.diverged)} reset"
        )
    return report
