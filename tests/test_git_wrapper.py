import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_airgap.git_wrapper import FILE_PROTOCOL, GitRepo, ensure_git_available


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    """A GitRepo over a fake repository directory."""
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path)


def test_init_rejects_non_repository(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_init_accepts_gitfile(tmp_path: Path) -> None:
    """Verifies that nested units, whose `.git` is a file, are accepted."""
    (tmp_path / ".git").write_text("gitdir: ../.git/modules/lib\n")
    assert GitRepo(tmp_path).path == tmp_path


def test_ensure_git_available_raises(mocker: MagicMock) -> None:
    mocker.patch("shutil.which", return_value=None)
    with pytest.raises(RuntimeError, match="Git is not installed"):
        ensure_git_available()


def test_run_wraps_git_errors(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that a failing git command surfaces as RuntimeError with stderr."""
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            128, ["git"], stderr="fatal: bad object"
        ),
    )

    with pytest.raises(RuntimeError, match="fatal: bad object"):
        repo.current_branch()


def test_list_refs_logs_error_on_failure(
    mocker: MagicMock, caplog: pytest.LogCaptureFixture, repo: GitRepo
) -> None:
    """Verifies that git failures are logged instead of passing silently."""
    mocker.patch.object(repo, "_run", side_effect=RuntimeError("Git is broken"))

    assert repo.list_refs("refs/remotes/bundle/") == []
    assert "Git error listing refs" in caplog.text


def test_remote_branches_excludes_symbolic_head(
    mocker: MagicMock, repo: GitRepo
) -> None:
    """Verifies remote-tracking refs are parsed into name -> sha pairs."""
    mocker.patch.object(
        repo,
        "_run",
        return_value=(
            "refs/remotes/origin/HEAD aaa\n"
            "refs/remotes/origin/main bbb\n"
            "refs/remotes/origin/feature/x ccc"
        ),
    )

    assert repo.remote_branches() == {"main": "bbb", "feature/x": "ccc"}


def test_worktree_branches_parses_porcelain(
    mocker: MagicMock, repo: GitRepo
) -> None:
    """Verifies detached worktrees contribute no branch."""
    mocker.patch.object(
        repo,
        "_run",
        return_value=(
            "worktree /src/sup\nHEAD abc\nbranch refs/heads/main\n\n"
            "worktree /src/wt\nHEAD def\ndetached\n\n"
            "worktree /src/wt2\nHEAD 123\nbranch refs/heads/release/1.0"
        ),
    )

    assert repo.worktree_branches() == {"main", "release/1.0"}


def test_worktree_branches_error_warns(
    mocker: MagicMock, caplog: pytest.LogCaptureFixture, repo: GitRepo
) -> None:
    mocker.patch.object(repo, "_run", side_effect=RuntimeError("old git"))

    assert repo.worktree_branches() == set()
    assert "Could not list worktrees" in caplog.text


def test_declared_submodules(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies paths are read from `.gitmodules` in declaration order."""
    (repo.path / ".gitmodules").write_text("[submodule]\n")
    mock_run = mocker.patch.object(
        repo,
        "_run",
        return_value="submodule.lib.path lib\nsubmodule.vendor/x.path vendor/x",
    )

    assert repo.declared_submodules() == ["lib", "vendor/x"]
    mock_run.assert_called_with(
        ["config", "--file", ".gitmodules", "--get-regexp", r"^submodule\..*\.path$"]
    )


def test_declared_submodules_without_gitmodules(
    mocker: MagicMock, repo: GitRepo
) -> None:
    mock_run = mocker.patch.object(repo, "_run")

    assert repo.declared_submodules() == []
    mock_run.assert_not_called()


def test_commit_count_and_rev_parse_failures(
    mocker: MagicMock, repo: GitRepo
) -> None:
    """Verifies read helpers degrade to neutral values on git errors."""
    mocker.patch.object(repo, "_run", side_effect=RuntimeError("empty repo"))

    assert repo.commit_count() == 0
    assert repo.rev_parse("HEAD") is None
    assert repo.remote_url() is None
    assert repo.is_ancestor("a", "b") is False


def test_mutation_commands(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies the exact git invocations of the mutating helpers."""
    mock_run = mocker.patch.object(repo, "_run", return_value="")

    repo.create_branch("dev", "abc123")
    mock_run.assert_called_with(["branch", "dev", "abc123"], capture=False)

    repo.create_branch("dev", "def456", force=True)
    mock_run.assert_called_with(["branch", "-f", "dev", "def456"], capture=False)

    repo.force_checkout("main", "refs/remotes/bundle/main")
    mock_run.assert_called_with(
        ["checkout", "--quiet", "-f", "-B", "main", "refs/remotes/bundle/main"],
        capture=False,
    )

    repo.init_submodules()
    mock_run.assert_called_with([*FILE_PROTOCOL, "submodule", "update", "--init"])

    repo.remove_remote("origin")
    mock_run.assert_called_with(["remote", "remove", "origin"], capture=False)


def test_bundle_commands(mocker: MagicMock, repo: GitRepo, tmp_path: Path) -> None:
    """Verifies bundle creation includes every ref and creates the parent dir."""
    mock_run = mocker.patch.object(repo, "_run", return_value="")
    dest = tmp_path / "out" / "lib" / "leaf.bundle"

    repo.bundle_create(dest)

    assert dest.parent.is_dir()
    mock_run.assert_called_with(["bundle", "create", "--quiet", str(dest), "--all"])

    repo.fetch_bundle(dest, "refs/remotes/bundle")
    mock_run.assert_called_with(
        [
            "fetch",
            "--quiet",
            "--force",
            str(dest),
            "refs/heads/*:refs/remotes/bundle/*",
            "refs/tags/*:refs/tags/*",
        ],
        capture=False,
    )


def test_bundle_verify_reports_failure(
    mocker: MagicMock, caplog: pytest.LogCaptureFixture, repo: GitRepo
) -> None:
    mocker.patch.object(repo, "_run", side_effect=RuntimeError("truncated"))

    assert repo.bundle_verify(Path("x.bundle")) is False
    assert "Bundle verification failed" in caplog.text


def test_clone_creates_parent(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies clone runs in the destination's parent and returns a GitRepo."""
    dest = tmp_path / "export" / "sup"

    def fake_run(cmd: list[str], **kwargs: object) -> MagicMock:
        (dest / ".git").mkdir(parents=True)
        return MagicMock(stdout="")

    mock_run = mocker.patch("subprocess.run", side_effect=fake_run)

    repo = GitRepo.clone(Path("/transfer/sup.bundle"), dest)

    assert repo.path == dest
    args, kwargs = mock_run.call_args
    assert args[0] == ["git", "clone", "--quiet", "/transfer/sup.bundle", str(dest)]
    assert kwargs["cwd"] == dest.parent
