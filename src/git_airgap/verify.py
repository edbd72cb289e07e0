import logging
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME
from .git_wrapper import GitRepo
from .walker import discover_units

logger = logging.getLogger(APP_NAME)


@dataclass
class UnitComparison:
    """Ref counts of one unit on both sides of a transfer.

    Attributes:
        path (Path): Unit path relative to the tree root.
        source_branches (int): Local branches in the source unit.
        source_tags (int): Tags in the source unit.
        dest_branches (int | None): Local branches in the materialized unit,
            None when the unit is missing on the destination side.
        dest_tags (int | None): Tags in the materialized unit.
        dest_remotes (list[str] | None): Remotes configured on the destination.
    """

    path: Path
    source_branches: int
    source_tags: int
    dest_branches: int | None = None
    dest_tags: int | None = None
    dest_remotes: list[str] | None = None

    @property
    def present(self) -> bool:
        return self.dest_branches is not None

    @property
    def matches(self) -> bool:
        """True when the unit exists, counts agree and no remote is configured."""
        return (
            self.present
            and self.source_branches == self.dest_branches
            and self.source_tags == self.dest_tags
            and not self.dest_remotes
        )


def compare_trees(source: Path, dest: Path) -> list[UnitComparison]:
    """Compares a source tree with its materialized copy, unit by unit.

    The source is walked without initializing anything; every unit is looked
    up at the mirrored path under `dest`.

    Args:
        source (Path): Root of the bundled tree.
        dest (Path): Root of the materialized tree.

    Returns:
        list[UnitComparison]: One entry per source unit, parents first.

    Raises:
        ValueError: If `source` is not a git repository.
    """
    comparisons = []
    for unit in discover_units(source, init_submodules=False):
        src = GitRepo(source / unit.path)
        comparison = UnitComparison(
            path=unit.path,
            source_branches=len(src.local_branches()),
            source_tags=len(src.tags()),
        )
        try:
            dst = GitRepo(dest / unit.path)
        except ValueError:
            logger.warning(f"Unit missing in destination: {unit.key}")
            comparisons.append(comparison)
            continue

        comparison.dest_branches = len(dst.local_branches())
        comparison.dest_tags = len(dst.tags())
        comparison.dest_remotes = dst.remotes()
        comparisons.append(comparison)
    return comparisons
