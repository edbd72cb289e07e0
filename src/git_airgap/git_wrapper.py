import logging
import shutil
import subprocess
from pathlib import Path

from .constants import APP_NAME, REMOTE_NAME

logger = logging.getLogger(APP_NAME)

# Local submodule URLs (file:// or plain paths) are refused by default since
# git 2.38.1 unless the file protocol is explicitly allowed.
FILE_PROTOCOL = ["-c", "protocol.file.allow=always"]


def ensure_git_available() -> str:
    """Verifies that the git executable is on PATH.

    Returns:
        str: The resolved path to the git executable.

    Raises:
        RuntimeError: If git cannot be found.
    """
    git = shutil.which("git")
    if not git:
        raise RuntimeError("Git is not installed. Please install git and try again.")
    return git


def _run_git(args: list[str], cwd: Path, capture: bool = True) -> str:
    """Runs a git command outside of any GitRepo instance (e.g. clone)."""
    try:
        res = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=capture,
            text=True,
            check=True,
        )
        return res.stdout.strip() if capture else ""
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"Git error: {e.stderr or e}") from e


class GitRepo:
    """A wrapper around the Git command-line interface for one repository unit.

    Every git interaction of the bundling and materialization pipeline goes
    through this class, so the orchestration modules can be exercised against
    a mocked instance without a git binary.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the path has no `.git` entry. Nested units carry a
                `.git` file instead of a directory, both are accepted.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def clone(cls, source: Path, dest: Path) -> "GitRepo":
        """Clones `source` (a repository or a bundle file) into `dest`.

        Args:
            source (Path): The clone source.
            dest (Path): The target directory. Must be missing or empty.

        Returns:
            GitRepo: The freshly cloned repository.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        _run_git(["clone", "--quiet", str(source), str(dest)], cwd=dest.parent)
        return cls(dest)

    def _run(self, args: list[str], capture: bool = True) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional): Whether to capture and return stdout.
                                      Defaults to True.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            RuntimeError: If the git command returns a non-zero exit code.
        """
        logger.debug(f"git {' '.join(args)} ({self.path})")
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {e.stderr or e}") from e

    def _lines(self, args: list[str]) -> list[str]:
        output = self._run(args)
        return output.splitlines() if output else []

    # --- Inspection ---

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The branch name, or an empty string on a detached HEAD.
        """
        return self._run(["branch", "--show-current"])

    def local_branches(self) -> list[str]:
        """Lists local branch names (`refs/heads/*`), sorted."""
        return sorted(
            self._lines(["for-each-ref", "--format=%(refname:short)", "refs/heads/"])
        )

    def remote_branches(self, remote: str = REMOTE_NAME) -> dict[str, str]:
        """Maps remote-tracking branch names to their commit SHAs.

        The symbolic `<remote>/HEAD` entry is excluded.

        Args:
            remote (str): The remote whose tracking branches to list.

        Returns:
            dict[str, str]: Branch name (without the remote prefix) to SHA.
        """
        prefix = f"refs/remotes/{remote}/"
        branches = {}
        for line in self._lines(
            ["for-each-ref", "--format=%(refname) %(objectname)", prefix]
        ):
            ref, _, sha = line.partition(" ")
            name = ref[len(prefix) :]
            if name and name != "HEAD":
                branches[name] = sha
        return branches

    def tags(self) -> list[str]:
        """Lists tag names, sorted."""
        return sorted(self._lines(["tag", "--list"]))

    def commit_count(self) -> int:
        """Counts commits reachable from any ref."""
        try:
            return int(self._run(["rev-list", "--all", "--count"]) or 0)
        except (RuntimeError, ValueError) as e:
            logger.debug(f"Commit count failed for {self.path}: {e}")
            return 0

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'main').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except RuntimeError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Checks whether `ancestor` is reachable from `descendant`."""
        try:
            self._run(["merge-base", "--is-ancestor", ancestor, descendant])
            return True
        except RuntimeError:
            return False

    def remotes(self) -> list[str]:
        """Lists configured remote names."""
        return self._lines(["remote"])

    def remote_url(self, remote: str = REMOTE_NAME) -> str | None:
        """Returns the URL of a remote, or None when it is not configured."""
        try:
            return self._run(["config", "--get", f"remote.{remote}.url"]) or None
        except RuntimeError:
            return None

    def worktree_branches(self) -> set[str]:
        """Lists branches checked out in any worktree of this repository.

        Parses `git worktree list --porcelain`, whose `branch` lines carry the
        full ref name.

        Returns:
            set[str]: Short branch names currently checked out somewhere.
        """
        branches = set()
        try:
            lines = self._lines(["worktree", "list", "--porcelain"])
        except RuntimeError as e:
            logger.warning(f"Could not list worktrees for {self.path}: {e}")
            return branches
        for line in lines:
            if line.startswith("branch refs/heads/"):
                branches.add(line[len("branch refs/heads/") :])
        return branches

    def declared_submodules(self) -> list[str]:
        """Lists nested unit paths declared in this unit's `.gitmodules`.

        Returns:
            list[str]: Paths relative to this unit, in declaration order.
        """
        if not (self.path / ".gitmodules").exists():
            return []
        try:
            lines = self._lines(
                [
                    "config",
                    "--file",
                    ".gitmodules",
                    "--get-regexp",
                    r"^submodule\..*\.path$",
                ]
            )
        except RuntimeError as e:
            # `git config --get-regexp` exits 1 when nothing matches.
            logger.debug(f"No submodule paths in {self.path}/.gitmodules: {e}")
            return []
        return [line.split(" ", 1)[1] for line in lines if " " in line]

    # --- Mutation ---

    def init_submodules(self) -> None:
        """Initializes this unit's direct submodules (one level, no recursion)."""
        self._run([*FILE_PROTOCOL, "submodule", "update", "--init"])

    def fetch_all(self) -> None:
        """Fetches every remote including tags."""
        self._run([*FILE_PROTOCOL, "fetch", "--all", "--tags"])

    def create_branch(self, branch: str, target: str, force: bool = False) -> None:
        """Creates a branch at `target`, or moves it there when `force` is set.

        Args:
            branch (str): The branch name.
            target (str): The commit SHA or reference to point at.
            force (bool): Whether to move an existing branch (`branch -f`).
        """
        cmd = ["branch"]
        if force:
            cmd.append("-f")
        cmd.extend([branch, target])
        self._run(cmd, capture=False)

    def checkout(self, branch: str) -> None:
        """Checks out an existing local branch."""
        self._run(["checkout", "--quiet", branch], capture=False)

    def force_checkout(self, branch: str, target: str) -> None:
        """Resets `branch` to `target` and checks it out, discarding local changes.

        Equivalent to `git reset --hard` on the branch followed by a checkout,
        without touching whichever branch was current before.
        """
        self._run(["checkout", "--quiet", "-f", "-B", branch, target], capture=False)

    def remove_remote(self, remote: str = REMOTE_NAME) -> None:
        """Removes a remote and its remote-tracking references."""
        self._run(["remote", "remove", remote], capture=False)

    def list_refs(self, pattern: str) -> list[str]:
        """Lists references matching a specific pattern.

        Args:
            pattern (str): The pattern to match (e.g., 'refs/remotes/bundle/').

        Returns:
            list[str]: A list of matching reference names.
        """
        try:
            return self._lines(["for-each-ref", "--format=%(refname)", pattern])
        except RuntimeError as e:
            logger.warning(f"Git error listing refs for {pattern}: {e}")
            return []

    def delete_ref(self, ref: str) -> None:
        """Deletes a reference."""
        self._run(["update-ref", "-d", ref], capture=False)

    # --- Bundles ---

    def bundle_create(self, dest: Path) -> None:
        """Writes every ref and its complete history into a bundle file."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        self._run(["bundle", "create", "--quiet", str(dest), "--all"])

    def bundle_verify(self, bundle: Path) -> bool:
        """Checks that a bundle is readable and applies cleanly to this repository.

        Returns:
            bool: True if `git bundle verify` succeeds.
        """
        try:
            self._run(["bundle", "verify", "--quiet", str(bundle)])
            return True
        except RuntimeError as e:
            logger.warning(f"Bundle verification failed for {bundle}: {e}")
            return False

    def fetch_bundle(self, bundle: Path, namespace: str) -> None:
        """Fetches a bundle's branches into `namespace` and its tags, forcibly.

        Args:
            bundle (Path): The bundle file.
            namespace (str): Ref prefix receiving the heads
                             (e.g., 'refs/remotes/bundle').
        """
        self._run(
            [
                "fetch",
                "--quiet",
                "--force",
                str(bundle),
                f"refs/heads/*:{namespace}/*",
                "refs/tags/*:refs/tags/*",
            ],
            capture=False,
        )
