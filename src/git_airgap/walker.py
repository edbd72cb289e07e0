import logging
import os
from pathlib import Path

from .constants import APP_NAME
from .git_wrapper import GitRepo
from .models import RepositoryUnit, UnitTree

logger = logging.getLogger(APP_NAME)


def _nested_repositories(unit_dir: Path) -> list[Path]:
    """Finds directories under `unit_dir` that carry their own `.git`.

    The search stops at each hit, so units nested inside a found unit are left
    for that unit's own scan.

    Args:
        unit_dir (Path): The working tree of one unit.

    Returns:
        list[Path]: Paths relative to `unit_dir`, in sorted order.
    """
    found = []
    for dirpath, dirnames, filenames in os.walk(unit_dir):
        current = Path(dirpath)
        if current != unit_dir and (".git" in dirnames or ".git" in filenames):
            found.append(current.relative_to(unit_dir))
            dirnames.clear()
            continue
        if ".git" in dirnames:
            dirnames.remove(".git")
        dirnames.sort()
    return sorted(found, key=lambda p: p.parts)


def discover_units(root_path: Path, init_submodules: bool = True) -> UnitTree:
    """Enumerates every repository unit nested under `root_path`.

    Nested units are read from each unit's `.gitmodules` and from the `.git`
    entries found in its working tree, so repositories that were cloned in
    place without being declared are included too. A declared unit is only
    descended into once it exists on disk, so when `init_submodules` is set
    each level is initialized (non-recursively) before its children are
    inspected. Declared units still missing their `.git` afterwards are
    recorded in `UnitTree.uninitialized` and skipped.

    Args:
        root_path (Path): The root repository unit.
        init_submodules (bool): Whether to initialize declared units that are
            not yet checked out.

    Returns:
        UnitTree: The unit hierarchy, iterated parent-before-child.

    Raises:
        ValueError: If `root_path` is not a git repository.
    """
    GitRepo(root_path)
    tree = UnitTree(root=RepositoryUnit(path=Path("."), is_root=True))

    pending = [tree.root]
    while pending:
        unit = pending.pop(0)
        repo = GitRepo(root_path / unit.path)
        declared = repo.declared_submodules()

        if init_submodules and any(
            not (repo.path / sub / ".git").exists() for sub in declared
        ):
            logger.info(f"Initializing nested units of {unit.key}")
            try:
                repo.init_submodules()
            except RuntimeError as e:
                logger.warning(f"Submodule initialization failed in {unit.key}: {e}")

        children: dict[tuple[str, ...], Path] = {}
        for sub in declared:
            child_path = unit.path / sub
            if not (root_path / child_path / ".git").exists():
                logger.warning(f"Unit not initialized: {child_path.as_posix()}")
                tree.uninitialized.append(child_path)
                continue
            children[Path(sub).parts] = child_path

        for found in _nested_repositories(repo.path):
            if found.parts not in children:
                child_path = unit.path / found
                logger.info(f"Found undeclared nested unit: {child_path.as_posix()}")
                children[found.parts] = child_path

        for child_path in children.values():
            pending.append(unit.add_child(child_path))

    return tree
