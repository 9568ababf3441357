# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Public API for ``regtuf.api``: the metadata document model."""

from .metadata import (
    EXPIRES_FORMAT,
    BaseFile,
    DelegatedRole,
    Delegations,
    Key,
    MetaFile,
    Metadata,
    Role,
    Root,
    SPECIFICATION_VERSION,
    Signed,
    Snapshot,
    TOP_LEVEL_ROLE_NAMES,
    TargetFile,
    Targets,
    Timestamp,
    VerificationResult,
)
