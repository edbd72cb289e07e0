import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BRANCH,
    FALLBACK_BRANCHES,
    LOCAL_CONFIG_NAME,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_path(value: str | Path | None) -> Path | None:
    """Expands a configured path, treating empty strings as unset."""
    if value is None or str(value).strip() == "":
        return None
    return Path(str(value)).expanduser()


@dataclass
class BundleConfig:
    """Settings for the bundling side of a transfer.

    Attributes:
        repo_path (Path | None): Root repository unit to bundle.
        remote_address (str): Remote the source tree came from. Recorded in the
            audit log and metadata for reference only.
        output_dir (Path | None): Parent of the timestamped `*_import` folder.
            Defaults to the working directory.
        fetch_remotes (bool): Fetch from `origin` before normalizing branches.
        init_submodules (bool): Shallow-initialize declared nested units.
        skip_normalized (bool): Skip normalization for units that already
            expose more than one local branch.
    """

    repo_path: Path | None = None
    remote_address: str = ""
    output_dir: Path | None = None
    fetch_remotes: bool = True
    init_submodules: bool = True
    skip_normalized: bool = False


@dataclass
class ExportConfig:
    """Settings for fresh-create reconstruction.

    Attributes:
        import_folder (Path | None): The `*_import` folder to read. Auto-detected
            in the working directory when unset.
        output_dir (Path | None): Parent of the `*_export` folder.
    """

    import_folder: Path | None = None
    output_dir: Path | None = None


@dataclass
class SyncConfig:
    """Settings for overwrite/resync mode.

    Attributes:
        repo_path (Path | None): Existing destination tree to overwrite.
        import_folder (Path | None): The `*_import` folder to read.
        create_backup (bool): Copy the destination before modifying it.
        backup_dir (Path | None): Where backups go. Defaults to the parent of
            the destination.
    """

    repo_path: Path | None = None
    import_folder: Path | None = None
    create_backup: bool = True
    backup_dir: Path | None = None


@dataclass
class BranchesConfig:
    """Default branch selection settings.

    Attributes:
        default_branch (str): Primary preferred branch name.
        fallbacks (list[str]): Further preferred names, tried in order.
    """

    default_branch: str = DEFAULT_BRANCH
    fallbacks: list[str] = field(default_factory=lambda: list(FALLBACK_BRANCHES))

    @property
    def preferred(self) -> list[str]:
        """The full preference order, without duplicates."""
        names = [self.default_branch, *self.fallbacks]
        return list(dict.fromkeys(name for name in names if name))


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for the diagnostic log before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


_PATH_KEYS = {"repo_path", "output_dir", "import_folder", "backup_dir"}
_BOOL_KEYS = {
    "fetch_remotes",
    "init_submodules",
    "skip_normalized",
    "create_backup",
}


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        bundle (BundleConfig): Bundling settings.
        export (ExportConfig): Fresh-create settings.
        sync (SyncConfig): Resync settings.
        branches (BranchesConfig): Default branch selection.
        limits (LimitsConfig): Resource limits.
    """

    bundle: BundleConfig = field(default_factory=BundleConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    branches: BranchesConfig = field(default_factory=BranchesConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(cls, work_dir: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            work_dir (Path | None): Directory to search for a local
                `airgap.toml` (or `[tool.airgap]` in `pyproject.toml`).

        Returns:
            Config: The fully merged configuration object.
        """
        instance = cls()
        if CONFIG_FILE.exists():
            instance._merge_from_file(CONFIG_FILE)

        if work_dir:
            local_toml = work_dir / LOCAL_CONFIG_NAME
            pyproject = work_dir / "pyproject.toml"

            if local_toml.exists():
                instance._merge_from_file(local_toml)
            elif pyproject.exists():
                instance._merge_from_file(pyproject, section="tool.airgap")

        return instance

    def _merge_from_file(self, path: Path, section: str | None = None) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated section path (e.g., 'tool.airgap').
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if section:
                for key in section.split("."):
                    data = data.get(key, {})

            if not data:
                return

            for name in ("bundle", "export", "sync", "limits"):
                if name in data:
                    setattr(
                        self,
                        name,
                        self._update_dataclass(name, getattr(self, name), data[name]),
                    )
            if "branches" in data:
                self.branches = self._update_dataclass(
                    "branches", self.branches, data["branches"]
                )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and coercing known formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in _PATH_KEYS:
                    filtered_updates[k] = parse_path(v)
                elif k in _BOOL_KEYS:
                    if not isinstance(v, bool):
                        raise ValueError(f"expected true/false, got {v!r}")
                    filtered_updates[k] = v
                elif k == "fallbacks":
                    if not isinstance(v, list) or not all(
                        isinstance(b, str) for b in v
                    ):
                        raise ValueError("expected a list of branch names")
                    filtered_updates[k] = list(v)
                else:
                    filtered_updates[k] = str(v)
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
