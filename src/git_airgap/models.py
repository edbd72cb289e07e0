"""Data model shared by the bundling and reconstruction sides of a transfer."""

import datetime
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath


@dataclass
class RepositoryUnit:
    """One version-controlled directory inside the tree being processed.

    Attributes:
        path (Path): Location relative to the tree root (`.` for the root).
        is_root (bool): Whether this is the root unit.
        depth (int): Nesting level; the root is 0, its direct children 1.
        children (list[RepositoryUnit]): Units nested directly inside this one.
    """

    path: Path
    is_root: bool = False
    depth: int = 0
    children: list["RepositoryUnit"] = field(default_factory=list)

    @property
    def key(self) -> str:
        """The POSIX form of `path`, used for display and artifact naming."""
        return PurePosixPath(*self.path.parts).as_posix()

    def add_child(self, path: Path) -> "RepositoryUnit":
        child = RepositoryUnit(path=path, depth=self.depth + 1)
        self.children.append(child)
        return child

    def walk(self) -> Iterator["RepositoryUnit"]:
        """Yields this unit and every descendant, parents before children.

        Traversal is breadth first, so units come out in ascending depth, and
        siblings in path order.
        """
        queue = deque([self])
        while queue:
            unit = queue.popleft()
            yield unit
            queue.extend(sorted(unit.children, key=lambda u: u.path.parts))


@dataclass
class UnitTree:
    """Result of walking a working tree.

    Iterating a tree is restartable; every iteration walks it again from the
    root.

    Attributes:
        root (RepositoryUnit): The root unit.
        uninitialized (list[Path]): Declared nested units that have no
            repository metadata on disk, relative to the root.
    """

    root: RepositoryUnit
    uninitialized: list[Path] = field(default_factory=list)

    def __iter__(self) -> Iterator[RepositoryUnit]:
        return self.root.walk()

    def __len__(self) -> int:
        return sum(1 for _ in self.root.walk())


def build_tree(paths: Iterable[Path]) -> RepositoryUnit:
    """Builds a unit tree from a flat collection of paths relative to the root.

    Each path's parent is the longest other path that is a proper prefix of it
    (compared component by component); paths with no such prefix hang off the
    root. Intermediate directories that are not units themselves are not
    represented.

    Args:
        paths (Iterable[Path]): Unit paths relative to the root. The root
            itself (`.`) may be included or omitted.

    Returns:
        RepositoryUnit: The root of the resulting tree.
    """
    root = RepositoryUnit(path=Path("."), is_root=True)
    nodes: dict[tuple[str, ...], RepositoryUnit] = {(): root}

    for path in sorted({Path(p) for p in paths}, key=lambda p: len(p.parts)):
        parts = path.parts
        if parts in nodes:
            continue
        parent = root
        for i in range(len(parts) - 1, 0, -1):
            if parts[:i] in nodes:
                parent = nodes[parts[:i]]
                break
        nodes[parts] = parent.add_child(path)

    return root


@dataclass(frozen=True)
class BundleArtifact:
    """A single-file snapshot of one unit's refs and full reachable history.

    Attributes:
        source_unit_path (Path): Path of the unit relative to the tree root.
        file_location (Path): Where the artifact lives on disk.
        content_hash (str): SHA-256 hex digest of the file bytes.
        size_bytes (int): File size.
        branch_count (int): Local branches in the unit when bundled.
        tag_count (int): Tags in the unit when bundled.
        commit_count (int): Commits reachable from any ref when bundled.
        verified (bool): Outcome of `git bundle verify`.
        remote_url (str | None): The unit's declared `origin`, if any.
    """

    source_unit_path: Path
    file_location: Path
    content_hash: str = ""
    size_bytes: int = 0
    branch_count: int = 0
    tag_count: int = 0
    commit_count: int = 0
    verified: bool = False
    remote_url: str | None = None

    @property
    def key(self) -> str:
        return PurePosixPath(*self.source_unit_path.parts).as_posix()


@dataclass
class TransferManifest:
    """All artifacts produced by one bundling run.

    Attributes:
        folder (Path): The `*_import` folder holding the artifacts.
        timestamp (str): Run timestamp, also the folder name prefix.
        source_path (str): Root of the bundled tree on the source side.
        remote_address (str): Documentation-only remote of the source tree.
        root_name (str): Name of the root unit; its artifact is
            `<root_name>.bundle` at the top of `folder`.
        artifacts (list[BundleArtifact]): One per bundled unit.
        missing (list[Path]): Units listed in the index whose artifact is
            absent on disk.
    """

    folder: Path
    timestamp: str
    root_name: str
    source_path: str = ""
    remote_address: str = ""
    artifacts: list[BundleArtifact] = field(default_factory=list)
    missing: list[Path] = field(default_factory=list)

    def get(self, unit_path: Path) -> BundleArtifact | None:
        """Returns the artifact for a unit path, if the manifest has one."""
        parts = Path(unit_path).parts
        for artifact in self.artifacts:
            if artifact.source_unit_path.parts == parts:
                return artifact
        return None

    def ordered(self) -> list[BundleArtifact]:
        """Artifacts in processing order: every parent before its children."""
        tree = build_tree(a.source_unit_path for a in self.artifacts)
        by_parts = {a.source_unit_path.parts: a for a in self.artifacts}
        return [by_parts[u.path.parts] for u in tree.walk() if u.path.parts in by_parts]


class UnitStatus(Enum):
    """Per-unit outcome recorded in the audit log."""

    VERIFIED = "✓ VERIFIED"
    CLONED = "✓ CLONED"
    SYNCED = "✓ SYNCED"
    FAILED = "✗ FAILED"
    NOT_INITIALIZED = "✗ NOT INITIALIZED (skipped)"
    NOT_FOUND = "✗ NOT FOUND (skipped)"
    NOT_A_REPOSITORY = "✗ NOT A REPOSITORY (skipped)"

    @property
    def ok(self) -> bool:
        return self in (UnitStatus.VERIFIED, UnitStatus.CLONED, UnitStatus.SYNCED)

    @property
    def skipped(self) -> bool:
        return self in (
            UnitStatus.NOT_INITIALIZED,
            UnitStatus.NOT_FOUND,
            UnitStatus.NOT_A_REPOSITORY,
        )


@dataclass
class UnitResult:
    """Outcome of processing one unit."""

    path: Path
    status: UnitStatus
    message: str = ""
    artifact: BundleArtifact | None = None
    branch_count: int = 0
    tag_count: int = 0
    commit_count: int = 0

    @property
    def key(self) -> str:
        return PurePosixPath(*Path(self.path).parts).as_posix() or "."


@dataclass
class RunSummary:
    """Aggregate outcome of a bundling, export or sync run.

    Attributes:
        operation (str): 'bundle', 'export' or 'sync'.
        output_path (Path): The import/export folder or the synced tree.
        log_path (Path): The run's audit log.
        backup_path (Path | None): Snapshot taken before a resync, if any.
        results (list[UnitResult]): One entry per unit, in processing order.
        started (datetime.datetime): Run start time.
        finished (datetime.datetime | None): Run end time.
    """

    operation: str
    output_path: Path
    log_path: Path
    backup_path: Path | None = None
    results: list[UnitResult] = field(default_factory=list)
    started: datetime.datetime = field(default_factory=datetime.datetime.now)
    finished: datetime.datetime | None = None

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.status.ok)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status.skipped)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded - self.skipped

    @property
    def elapsed(self) -> float:
        end = self.finished or datetime.datetime.now()
        return (end - self.started).total_seconds()
