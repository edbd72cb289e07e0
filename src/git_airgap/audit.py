"""Append-only, human-readable audit logs written alongside a transfer."""

import datetime
import getpass
import hashlib
import logging
from pathlib import Path

from .constants import APP_NAME, SEPARATOR
from .models import BundleArtifact, RunSummary, UnitResult, UnitStatus

logger = logging.getLogger(APP_NAME)


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    """Computes the SHA-256 hex digest of a file, streaming it in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def format_size(num_bytes: int) -> str:
    """Renders a byte count the way `du -h` would (e.g. '1.5M')."""
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024 or unit == "G":
            return f"{int(size)}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}G"


def format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


def current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class AuditLog:
    """Incrementally written text log with one entry per repository unit.

    Writing must never interfere with the run it documents: the first write
    failure is reported through the diagnostic logger and later writes are
    dropped silently.

    Attributes:
        path (Path): The log file.
    """

    def __init__(self, path: Path):
        self.path = path
        self._failed = False

    def line(self, text: str = "") -> None:
        """Appends one line to the log."""
        self.lines([text])

    def lines(self, lines: list[str]) -> None:
        """Appends several lines in a single write."""
        if self._failed:
            return
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write("".join(f"{line}\n" for line in lines))
        except OSError as e:
            self._failed = True
            logger.warning(f"Audit log write failed ({self.path}): {e}")

    def header(self, title: str, fields: dict[str, str]) -> None:
        """Writes the framed run header."""
        self.lines(
            [
                SEPARATOR,
                title,
                SEPARATOR,
                f"Generated: {datetime.datetime.now():%a %b %d %H:%M:%S %Y}",
                f"Ran by: {current_user()}",
                *(f"{k}: {v}" for k, v in fields.items()),
                SEPARATOR,
                "",
            ]
        )

    def section(self, title: str) -> None:
        self.lines([SEPARATOR, title, SEPARATOR])

    def artifact_entry(
        self, number: int, result: UnitResult, export_root: Path | None = None
    ) -> None:
        """Records a bundled unit: verification, hash, size and ref counts."""
        artifact = result.artifact
        lines = [
            "",
            f"Unit #{number}: {result.key}",
            "-" * len(SEPARATOR),
            f"Status: {result.status.value}",
        ]
        if result.message:
            lines.append(f"Detail: {result.message}")
        if artifact is not None:
            lines.extend(_artifact_lines(artifact, export_root))
        lines.append("")
        self.lines(lines)

    def unit_entry(self, number: int, result: UnitResult) -> None:
        """Records a materialized or resynced unit."""
        lines = [
            "",
            f"Unit #{number}: {result.key}",
            "-" * len(SEPARATOR),
            f"Status: {result.status.value}",
        ]
        if result.message:
            lines.append(f"Detail: {result.message}")
        if result.artifact is not None:
            lines.append(f"Bundle File: {result.artifact.file_location.name}")
            if result.artifact.content_hash:
                lines.append(f"SHA256: {result.artifact.content_hash}")
                lines.append(f"File Size: {format_size(result.artifact.size_bytes)}")
        if result.status.ok:
            lines.extend(
                [
                    f"Branches: {result.branch_count}",
                    f"Tags: {result.tag_count}",
                    f"Total Commits: {result.commit_count}",
                ]
            )
        lines.append("")
        self.lines(lines)

    def summary(self, summary: RunSummary, extra: dict[str, str] | None = None) -> None:
        """Appends the run-end summary entry."""
        lines = [
            SEPARATOR,
            "SUMMARY",
            SEPARATOR,
            f"Units Processed: {summary.total}",
            f"Succeeded: {summary.succeeded}",
            f"Skipped: {summary.skipped}",
            f"Failed: {summary.failed}",
        ]
        lines.extend(f"{k}: {v}" for k, v in (extra or {}).items())
        if summary.backup_path:
            lines.append(f"Backup: {summary.backup_path}")
        lines.extend(
            [
                f"Time Taken: {format_elapsed(summary.elapsed)}",
                f"Script Completed: {datetime.datetime.now():%a %b %d %H:%M:%S %Y}",
                SEPARATOR,
            ]
        )
        self.lines(lines)


def _artifact_lines(artifact: BundleArtifact, export_root: Path | None) -> list[str]:
    location = artifact.file_location
    if export_root is not None:
        try:
            location = artifact.file_location.relative_to(export_root)
        except ValueError:
            pass
    verification = UnitStatus.VERIFIED if artifact.verified else UnitStatus.FAILED
    return [
        f"Bundle File: {artifact.file_location.name}",
        f"Verification: {verification.value}",
        f"SHA256: {artifact.content_hash}",
        f"File Size: {format_size(artifact.size_bytes)}",
        f"Branches: {artifact.branch_count}",
        f"Tags: {artifact.tag_count}",
        f"Total Commits: {artifact.commit_count}",
        f"Remote URL: {artifact.remote_url or 'N/A'}",
        f"Path in Export: ./{location.as_posix()}",
    ]
