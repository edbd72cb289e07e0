"""Tests for reading and writing transfer metadata."""

from pathlib import Path

import pytest

from git_airgap.manifest import (
    find_import_folder,
    load_manifest,
    read_metadata,
    write_metadata,
)
from git_airgap.models import BundleArtifact, TransferManifest


def make_transfer(folder: Path, units: list[str], root_name: str = "sup") -> TransferManifest:
    """Creates dummy artifact files and the matching in-memory transfer."""
    transfer = TransferManifest(
        folder=folder,
        timestamp="20250102_0304",
        root_name=root_name,
        source_path="/src/sup",
        remote_address="git@example.com:org/sup.git",
    )
    for unit in units:
        if unit == ".":
            location = folder / f"{root_name}.bundle"
        else:
            location = folder / f"{unit}.bundle"
        location.parent.mkdir(parents=True, exist_ok=True)
        location.write_bytes(b"# v2 git bundle\n" + unit.encode() * 10)
        transfer.artifacts.append(
            BundleArtifact(source_unit_path=Path(unit), file_location=location)
        )
    return transfer


def test_metadata_roundtrip(tmp_path: Path) -> None:
    """Verifies the written index can be read back."""
    transfer = make_transfer(tmp_path, [".", "lib", "lib/vendor/leaf"])

    path = write_metadata(transfer)
    fields, indexed = read_metadata(path)

    assert fields["Export Timestamp"] == "20250102_0304"
    assert fields["Super Repository"] == "sup"
    assert fields["Submodules Count"] == "2"
    assert indexed == ["lib.bundle", "lib/vendor/leaf.bundle", "sup.bundle"]
    assert "20250102_0304_export" in path.read_text()


def test_load_manifest_maps_paths_to_units(tmp_path: Path) -> None:
    """Verifies artifact paths become unit paths and the root is identified."""
    folder = tmp_path / "20250102_0304_import"
    write_metadata(make_transfer(folder, [".", "lib", "lib/vendor/leaf"]))

    transfer = load_manifest(folder)

    assert transfer.root_name == "sup"
    assert transfer.timestamp == "20250102_0304"
    assert transfer.remote_address == "git@example.com:org/sup.git"
    assert [a.key for a in transfer.artifacts][0] == "."
    assert sorted(a.key for a in transfer.artifacts) == [".", "lib", "lib/vendor/leaf"]
    leaf = transfer.get(Path("lib/vendor/leaf"))
    assert leaf.file_location == folder / "lib" / "vendor" / "leaf.bundle"
    assert len(leaf.content_hash) == 64
    assert leaf.size_bytes > 0
    assert transfer.missing == []


def test_root_is_named_by_metadata_among_top_level_bundles(tmp_path: Path) -> None:
    """Verifies a top-level nested unit is not mistaken for the root."""
    folder = tmp_path / "t_import"
    write_metadata(make_transfer(folder, [".", "zz-big-lib"]))
    (folder / "zz-big-lib.bundle").write_bytes(b"x" * 10_000)

    transfer = load_manifest(folder)

    assert transfer.root_name == "sup"
    assert transfer.get(Path("zz-big-lib")) is not None


def test_root_without_metadata_uses_largest(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    folder = tmp_path / "20250102_0304_import"
    make_transfer(folder, [".", "lib", "lib/leaf"])
    (folder / "sup.bundle").write_bytes(b"x" * 10_000)

    transfer = load_manifest(folder)

    assert transfer.root_name == "sup"
    assert transfer.timestamp == "20250102_0304"
    assert "No metadata.txt" in caplog.text
    assert "using the largest top-level bundle" in caplog.text


def test_indexed_but_missing_artifacts_are_reported(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies an artifact listed in the index but absent is recorded."""
    folder = tmp_path / "t_import"
    write_metadata(make_transfer(folder, [".", "lib", "lib/leaf"]))
    (folder / "lib" / "leaf.bundle").unlink()

    transfer = load_manifest(folder)

    assert transfer.missing == [Path("lib/leaf")]
    assert transfer.get(Path("lib/leaf")) is None
    assert "Indexed artifact missing: lib/leaf.bundle" in caplog.text


def test_load_manifest_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="does not exist"):
        load_manifest(tmp_path / "nope")

    (tmp_path / "empty_import" / "lib").mkdir(parents=True)
    (tmp_path / "empty_import" / "lib" / "x.bundle").write_text("")
    with pytest.raises(FileNotFoundError, match="No bundles"):
        load_manifest(tmp_path / "empty_import")


def test_find_import_folder_picks_latest(tmp_path: Path) -> None:
    for name in ["20240101_0000_import", "20250101_0000_import", "20250101_0000_export"]:
        (tmp_path / name).mkdir()
    (tmp_path / "zzz_import").write_text("not a dir")

    assert find_import_folder(tmp_path) == tmp_path / "20250101_0000_import"
    assert find_import_folder(tmp_path / "20240101_0000_import") is None
