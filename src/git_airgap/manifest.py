"""Reading and writing the index of a transfer (`metadata.txt`)."""

import logging
import re
from pathlib import Path, PurePosixPath

from .audit import current_user, sha256_file
from .constants import (
    APP_NAME,
    BUNDLE_EXTENSION,
    EXPORT_SUFFIX,
    IMPORT_SUFFIX,
    METADATA_NAME,
    SEPARATOR,
)
from .models import BundleArtifact, TransferManifest

logger = logging.getLogger(APP_NAME)

ROOT_KEY = "Super Repository"
STRUCTURE_MARKER = "FOLDER STRUCTURE:"

_FIELD_RE = re.compile(r"^([A-Za-z][A-Za-z ]*):\s*(.*)$")


def write_metadata(transfer: TransferManifest) -> Path:
    """Writes the artifact index and import instructions for a transfer.

    Args:
        transfer (TransferManifest): The completed bundling run.

    Returns:
        Path: The written metadata file.
    """
    path = transfer.folder / METADATA_NAME
    rel_paths = sorted(
        f"./{a.file_location.relative_to(transfer.folder).as_posix()}"
        for a in transfer.artifacts
    )
    lines = [
        SEPARATOR,
        "Git Bundle Metadata",
        SEPARATOR,
        f"Export Timestamp: {transfer.timestamp}",
        f"Ran by: {current_user()}",
        f"Source Path: {transfer.source_path}",
        f"Remote Address: {transfer.remote_address or 'N/A'}",
        f"{ROOT_KEY}: {transfer.root_name}",
        f"Submodules Count: {max(len(transfer.artifacts) - 1, 0)}",
        SEPARATOR,
        "",
        STRUCTURE_MARKER,
        "-" * len(SEPARATOR),
        *rel_paths,
        "",
        SEPARATOR,
        "IMPORT INSTRUCTIONS:",
        SEPARATOR,
        "1. Transfer this entire folder to the destination network",
        "2. Run 'git-airgap export' in the directory containing this folder",
        "   (or 'git-airgap sync --repo <existing tree>' to update a prior copy)",
        "3. The repository structure will be recreated from the bundles",
        "",
        "Note: The corresponding export folder will be named:",
        f"      {transfer.timestamp}{EXPORT_SUFFIX}",
        SEPARATOR,
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def read_metadata(path: Path) -> tuple[dict[str, str], list[str]]:
    """Parses a metadata file into header fields and indexed artifact paths.

    Returns:
        tuple[dict[str, str], list[str]]: Header key/values, and the artifact
        paths listed under `FOLDER STRUCTURE:` (relative, without `./`).
    """
    fields: dict[str, str] = {}
    indexed: list[str] = []
    in_structure = False

    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line == STRUCTURE_MARKER:
            in_structure = True
            continue
        if in_structure:
            if line.startswith("./") and line.endswith(BUNDLE_EXTENSION):
                indexed.append(line[2:])
            elif line.startswith("=") and indexed:
                in_structure = False
            continue
        match = _FIELD_RE.match(line)
        if match and match.group(1) not in fields:
            fields[match.group(1)] = match.group(2).strip()

    return fields, indexed


def find_import_folder(search_dir: Path) -> Path | None:
    """Finds the most recent `*_import` folder directly inside `search_dir`.

    Folder names start with a sortable timestamp, so the lexicographically
    last name is the newest.
    """
    candidates = sorted(
        p for p in search_dir.glob(f"*{IMPORT_SUFFIX}") if p.is_dir()
    )
    return candidates[-1] if candidates else None


def folder_timestamp(folder: Path) -> str:
    """Extracts the timestamp prefix of an `*_import` folder name."""
    name = folder.name
    if name.endswith(IMPORT_SUFFIX):
        return name[: -len(IMPORT_SUFFIX)]
    return name


def _unit_path(rel: PurePosixPath) -> Path:
    return Path(*rel.with_suffix("").parts)


def _pick_root(folder: Path, top_level: list[Path], named: str | None) -> Path:
    if named:
        candidate = folder / f"{named}{BUNDLE_EXTENSION}"
        if candidate.is_file():
            return candidate
        logger.warning(f"Root artifact named in metadata not found: {candidate.name}")

    if len(top_level) == 1:
        return top_level[0]

    largest = max(top_level, key=lambda p: p.stat().st_size)
    logger.warning(
        f"Could not determine the root artifact from metadata, "
        f"using the largest top-level bundle: {largest.name}"
    )
    return largest


def load_manifest(folder: Path) -> TransferManifest:
    """Loads the transfer manifest of an `*_import` folder.

    The root artifact is the one named in `metadata.txt`; without metadata it
    is the only top-level bundle, or else the largest one. Every other bundle
    is a nested unit whose path is the bundle's relative path minus the
    extension.

    Args:
        folder (Path): The import folder.

    Returns:
        TransferManifest: The artifacts, root first.

    Raises:
        FileNotFoundError: If the folder is missing or holds no artifacts.
    """
    if not folder.is_dir():
        raise FileNotFoundError(f"Import folder does not exist: {folder}")

    bundles = sorted(folder.rglob(f"*{BUNDLE_EXTENSION}"))
    top_level = [b for b in bundles if b.parent == folder]
    if not top_level:
        raise FileNotFoundError(f"No bundles found in {folder}")

    fields: dict[str, str] = {}
    indexed: list[str] = []
    metadata = folder / METADATA_NAME
    if metadata.is_file():
        fields, indexed = read_metadata(metadata)
    else:
        logger.warning(f"No {METADATA_NAME} in {folder}")

    root_bundle = _pick_root(folder, top_level, fields.get(ROOT_KEY))
    transfer = TransferManifest(
        folder=folder,
        timestamp=fields.get("Export Timestamp") or folder_timestamp(folder),
        root_name=root_bundle.name[: -len(BUNDLE_EXTENSION)],
        source_path=fields.get("Source Path", ""),
        remote_address=fields.get("Remote Address", ""),
    )

    for bundle in [root_bundle, *(b for b in bundles if b != root_bundle)]:
        rel = PurePosixPath(bundle.relative_to(folder).as_posix())
        unit = Path(".") if bundle == root_bundle else _unit_path(rel)
        transfer.artifacts.append(
            BundleArtifact(
                source_unit_path=unit,
                file_location=bundle,
                content_hash=sha256_file(bundle),
                size_bytes=bundle.stat().st_size,
            )
        )

    for rel in indexed:
        if not (folder / rel).is_file():
            rel_path = PurePosixPath(rel)
            unit = (
                Path(".")
                if rel_path.with_suffix("").as_posix() == transfer.root_name
                else _unit_path(rel_path)
            )
            logger.warning(f"Indexed artifact missing: {rel}")
            transfer.missing.append(unit)

    return transfer
