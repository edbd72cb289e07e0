import os
from pathlib import Path

"""Global constants and path definitions for git-airgap.

This module defines the on-disk layout of a transfer (artifact extension,
folder suffixes, the text files written next to the artifacts), the state and
configuration paths (XDG where applicable), and the branch naming conventions
shared by both sides of a transfer.
"""

# --- Identity ---
APP_NAME = "git-airgap"
"""str: The human-readable application name."""

# --- Transfer Layout ---
BUNDLE_EXTENSION = ".bundle"
"""str: File extension of every bundle artifact."""

IMPORT_SUFFIX = "_import"
"""str: Suffix of the folder produced by a bundling run."""

EXPORT_SUFFIX = "_export"
"""str: Suffix of the folder produced by a fresh-create run."""

FOLDER_TIMESTAMP = "%Y%m%d_%H%M"
"""str: strftime format used for import/export folder names."""

BACKUP_TIMESTAMP = "%Y%m%d_%H%M%S"
"""str: strftime format used for resync backup and log names."""

VERIFICATION_LOG_NAME = "bundle_verification.txt"
"""str: Audit log written next to the artifacts by a bundling run."""

METADATA_NAME = "metadata.txt"
"""str: Index of the artifacts produced by a bundling run."""

EXPORT_LOG_NAME = "export_log.txt"
"""str: Audit log written by a fresh-create run."""

NETWORK_NOTES_NAME = "NETWORK_CONNECTIVITY_NOTES.txt"
"""str: Follow-up instructions for configuring remotes after a transfer."""

# --- Git / Logic Constants ---
BUNDLE_NAMESPACE = "refs/remotes/bundle"
"""str: Temporary namespace bundle heads are fetched into during a resync."""

REMOTE_NAME = "origin"
"""str: The remote whose tracking branches are normalized before bundling."""

DEFAULT_BRANCH = "main"
"""str: Primary preferred branch name."""

FALLBACK_BRANCHES = ["master", "develop"]
"""list[str]: Secondary and tertiary preferred branch names, in order."""

SEPARATOR = "=" * 65
"""str: Rule used to frame sections of the audit logs."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-airgap"
"""Path: The directory for runtime state data (diagnostic log)."""

LOG_FILE = STATE_DIR / "airgap.log"
"""Path: The rotating diagnostic log shared by every run."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-airgap"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The global configuration file path."""

LOCAL_CONFIG_NAME = "airgap.toml"
"""str: Per-directory configuration file looked up in the working directory."""
