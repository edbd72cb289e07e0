"""Git Airgap: move a repository tree with nested submodules across an air gap.

This package bundles a root repository and every nested submodule into git
bundle files, and recreates (or force-resyncs) the tree from those bundles on
a network that cannot reach the original remotes.
"""

from . import (
    audit,
    branches,
    bundler,
    cli,
    config,
    constants,
    git_wrapper,
    manifest,
    materializer,
    models,
    verify,
    walker,
)

__all__ = [
    "audit",
    "branches",
    "bundler",
    "cli",
    "config",
    "constants",
    "git_wrapper",
    "manifest",
    "materializer",
    "models",
    "verify",
    "walker",
]
