# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Repository side of the registry trust metadata.

``MetadataManager`` owns the signed metadata of one repository and performs
every change to it; ``Repository`` is the editing abstraction it builds on
and ``RepositoryStore`` the on-disk store of metadata and target content.
"""

from regtuf.repository._manager import (  # noqa: F401
    MetadataManager,
    RepositoryStatus,
    RoleStatus,
    TargetVerificationResult,
)
from regtuf.repository._repository import AbortEdit, Repository  # noqa: F401
from regtuf.repository._store import RepositoryStore  # noqa: F401
