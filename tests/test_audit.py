import hashlib
from pathlib import Path

import pytest

from git_airgap.audit import AuditLog, format_elapsed, format_size, sha256_file
from git_airgap.models import BundleArtifact, RunSummary, UnitResult, UnitStatus


def test_sha256_file_streams(tmp_path: Path) -> None:
    data = b"PACK" * 10_000
    path = tmp_path / "x.bundle"
    path.write_bytes(data)

    assert sha256_file(path, chunk_size=7) == hashlib.sha256(data).hexdigest()


@pytest.mark.parametrize(
    "size, expected",
    [(0, "0B"), (512, "512B"), (1536, "1.5K"), (5 * 1024**2, "5.0M"), (3 * 1024**3, "3.0G")],
)
def test_format_size(size: int, expected: str) -> None:
    assert format_size(size) == expected


def test_format_elapsed() -> None:
    assert format_elapsed(125.9) == "2m 5s"


def test_artifact_entry_records_integrity(tmp_path: Path) -> None:
    """Verifies a bundled unit entry carries status, hash, size and counts."""
    log = AuditLog(tmp_path / "bundle_verification.txt")
    artifact = BundleArtifact(
        source_unit_path=Path("lib/leaf"),
        file_location=tmp_path / "lib" / "leaf.bundle",
        content_hash="ab" * 32,
        size_bytes=2048,
        branch_count=3,
        tag_count=2,
        commit_count=9,
        verified=True,
        remote_url="git@example.com:org/leaf.git",
    )
    result = UnitResult(
        path=Path("lib/leaf"), status=UnitStatus.VERIFIED, artifact=artifact
    )

    log.artifact_entry(3, result, export_root=tmp_path)

    text = log.path.read_text()
    assert "Unit #3: lib/leaf" in text
    assert "Status: ✓ VERIFIED" in text
    assert f"SHA256: {'ab' * 32}" in text
    assert "File Size: 2.0K" in text
    assert "Branches: 3" in text
    assert "Tags: 2" in text
    assert "Remote URL: git@example.com:org/leaf.git" in text
    assert "Path in Export: ./lib/leaf.bundle" in text


def test_unit_entry_for_skipped_unit(tmp_path: Path) -> None:
    log = AuditLog(tmp_path / "export_log.txt")
    log.unit_entry(
        2,
        UnitResult(
            path=Path("gone"),
            status=UnitStatus.NOT_FOUND,
            message="no bundle artifact in the transfer",
        ),
    )

    text = log.path.read_text()
    assert "Status: ✗ NOT FOUND (skipped)" in text
    assert "Detail: no bundle artifact in the transfer" in text
    assert "Branches:" not in text


def test_summary_reports_counts_and_backup(tmp_path: Path) -> None:
    log = AuditLog(tmp_path / "sync.txt")
    summary = RunSummary(
        operation="sync",
        output_path=tmp_path,
        log_path=log.path,
        backup_path=tmp_path / "sup_backup_20250101_120000",
        results=[
            UnitResult(path=Path("."), status=UnitStatus.SYNCED),
            UnitResult(path=Path("x"), status=UnitStatus.FAILED),
        ],
    )

    log.summary(summary, {"Repository Path": "/dst/sup"})

    text = log.path.read_text()
    assert "Units Processed: 2" in text
    assert "Succeeded: 1" in text
    assert "Failed: 1" in text
    assert "Repository Path: /dst/sup" in text
    assert "Backup: " in text
    assert "Script Completed:" in text


def test_write_failure_does_not_raise(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies an unwritable log is reported once and then ignored.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    log = AuditLog(tmp_path / "missing-dir" / "log.txt")

    log.header("Git Export Log", {"Import Folder": "x"})
    log.section("UNITS")
    log.line("more")

    assert not log.path.exists()
    assert caplog.text.count("Audit log write failed") == 1
