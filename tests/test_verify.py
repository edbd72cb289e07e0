from pathlib import Path
from unittest.mock import MagicMock

from git_airgap.models import UnitTree, build_tree
from git_airgap.verify import UnitComparison, compare_trees


def test_unit_comparison_matches() -> None:
    assert UnitComparison(Path("."), 4, 4, 4, 4, []).matches
    assert not UnitComparison(Path("."), 4, 4, 4, 3, []).matches
    assert not UnitComparison(Path("."), 4, 4, 4, 4, ["origin"]).matches
    assert not UnitComparison(Path("."), 4, 4).matches


def test_compare_trees_reports_missing_units(
    mocker: MagicMock, tmp_path: Path
) -> None:
    """Verifies units absent from the destination are reported, not raised.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
        tmp_path (Path): Pytest fixture for a temporary directory.
    """
    source, dest = tmp_path / "src", tmp_path / "dst"
    (dest / ".git").mkdir(parents=True)
    discover = mocker.patch(
        "git_airgap.verify.discover_units",
        return_value=UnitTree(root=build_tree([Path("lib")])),
    )

    def factory(path: Path) -> MagicMock:
        if path.is_relative_to(dest) and not (path / ".git").exists():
            raise ValueError(f"Not a git repository: {path}")
        repo = mocker.MagicMock()
        repo.local_branches.return_value = ["main", "dev"]
        repo.tags.return_value = ["v1"]
        repo.remotes.return_value = []
        return repo

    mocker.patch("git_airgap.verify.GitRepo", side_effect=factory)

    result = compare_trees(source, dest)

    discover.assert_called_once_with(source, init_submodules=False)
    assert [(c.path, c.present, c.matches) for c in result] == [
        (Path("."), True, True),
        (Path("lib"), False, False),
    ]
    assert isinstance(result[0], UnitComparison)
