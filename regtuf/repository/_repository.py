# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Repository abstraction for metadata management"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager, suppress
from copy import deepcopy
from typing import Dict, Generator, Optional, Tuple

from regtuf.api.metadata import (
    Metadata,
    MetaFile,
    Root,
    Signed,
    Snapshot,
    Targets,
    Timestamp,
)
from regtuf.exceptions import BadVersionNumberError, UnsignedMetadataError

logger = logging.getLogger(__name__)


class AbortEdit(Exception):  # noqa: N818
    """Raise to exit the edit() contextmanager without saving changes"""


class Repository(ABC):
    """Abstract class for metadata modifying implementations

    Implementations must implement open() and close(), and can then use the
    edit() contextmanager to implement actual operations. The snapshot and
    timestamp cascade is implemented in this base class.
    """

    @abstractmethod
    def open(self, role: str) -> Metadata:
        """Return a copy of the current metadata of ``role``.

        If role has no metadata, return a version 0 document so that the
        version bump in close() produces version 1.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self, role: str, md: Metadata) -> None:
        """Write a new version of the metadata of ``role``.

        Bump version, reset expiry and replace signatures with ones from all
        available keys. Keep snapshot_info and targets_infos updated.
        """
        raise NotImplementedError

    @property
    def targets_infos(self) -> Dict[str, MetaFile]:
        """MetaFiles of the current targets metadata, keyed by filename.

        Used by do_snapshot() to update Snapshot.meta.
        """
        raise NotImplementedError

    @property
    def snapshot_info(self) -> MetaFile:
        """MetaFile of the current snapshot metadata.

        Used by do_timestamp() to update Timestamp.snapshot_meta.
        """
        raise NotImplementedError

    @contextmanager
    def edit(self, role: str) -> Generator[Signed, None, None]:
        """Context manager for editing a role's metadata

        The caller changes the yielded Signed object and, when the block
        exits, a new version of the role's metadata is stored. Raising
        AbortEdit inside the block cancels the edit: none of the changes are
        stored.
        """
        md = self.open(role)
        with suppress(AbortEdit):
            yield md.signed
            self.close(role, md)

    @contextmanager
    def edit_root(self) -> Generator[Root, None, None]:
        """Context manager for editing root metadata. See edit()"""
        with self.edit(Root.type) as root:
            if not isinstance(root, Root):
                raise RuntimeError("Unexpected root type")
            yield root

    @contextmanager
    def edit_timestamp(self) -> Generator[Timestamp, None, None]:
        """Context manager for editing timestamp metadata. See edit()"""
        with self.edit(Timestamp.type) as timestamp:
            if not isinstance(timestamp, Timestamp):
                raise RuntimeError("Unexpected timestamp type")
            yield timestamp

    @contextmanager
    def edit_snapshot(self) -> Generator[Snapshot, None, None]:
        """Context manager for editing snapshot metadata. See edit()"""
        with self.edit(Snapshot.type) as snapshot:
            if not isinstance(snapshot, Snapshot):
                raise RuntimeError("Unexpected snapshot type")
            yield snapshot

    @contextmanager
    def edit_targets(self) -> Generator[Targets, None, None]:
        """Context manager for editing targets metadata. See edit()"""
        with self.edit(Targets.type) as targets:
            if not isinstance(targets, Targets):
                raise RuntimeError("Unexpected targets type")
            yield targets

    def root(self) -> Root:
        """Read current root metadata"""
        root = self.open(Root.type).signed
        if not isinstance(root, Root):
            raise RuntimeError("Unexpected root type")
        return root

    def timestamp(self) -> Timestamp:
        """Read current timestamp metadata"""
        timestamp = self.open(Timestamp.type).signed
        if not isinstance(timestamp, Timestamp):
            raise RuntimeError("Unexpected timestamp type")
        return timestamp

    def snapshot(self) -> Snapshot:
        """Read current snapshot metadata"""
        snapshot = self.open(Snapshot.type).signed
        if not isinstance(snapshot, Snapshot):
            raise RuntimeError("Unexpected snapshot type")
        return snapshot

    def targets(self) -> Targets:
        """Read current targets metadata"""
        targets = self.open(Targets.type).signed
        if not isinstance(targets, Targets):
            raise RuntimeError("Unexpected targets type")
        return targets

    def _is_signed_by_current_keys(self, role: str) -> bool:
        md = self.open(role)
        try:
            self.root().verify_delegate(role, md.signed_bytes, md.signatures)
        except UnsignedMetadataError:
            return False
        return True

    def do_snapshot(
        self, force: bool = False
    ) -> Tuple[bool, Dict[str, MetaFile]]:
        """Update snapshot meta information

        Points Snapshot.meta at the current targets metadata. A new snapshot
        version is made when any targets entry changed, when the current
        snapshot is not signed by the keys root trusts now, or when
        ``force`` is set.

        Returns: Tuple of
            - True if snapshot was created, False if not
            - MetaFiles replaced in snapshot meta

        Raises:
            BadVersionNumberError: A targets version went backwards.
        """
        update_version = force or not self._is_signed_by_current_keys(
            Snapshot.type
        )
        removed: Dict[str, MetaFile] = {}

        with self.edit_snapshot() as snapshot:
            for keyname, new_meta in self.targets_infos.items():
                if keyname not in snapshot.meta:
                    update_version = True
                    snapshot.meta[keyname] = deepcopy(new_meta)
                    continue

                old_meta = snapshot.meta[keyname]
                if new_meta.version < old_meta.version:
                    raise BadVersionNumberError(f"{keyname} version rollback")
                if new_meta != old_meta:
                    update_version = True
                    snapshot.meta[keyname] = deepcopy(new_meta)
                    removed[keyname] = old_meta

            if not update_version:
                # prevent edit_snapshot() from storing a new version
                raise AbortEdit("Skip snapshot: No targets changes")

        if not update_version:
            # this is reachable as edit_snapshot() handles AbortEdit
            logger.debug("Snapshot update not needed")  # type: ignore[unreachable]
        else:
            logger.debug("Snapshot v%d", snapshot.version)

        return update_version, removed

    def do_timestamp(
        self, force: bool = False
    ) -> Tuple[bool, Optional[MetaFile]]:
        """Update timestamp meta information

        Points Timestamp.snapshot_meta at the current snapshot metadata.

        Returns: Tuple of
            - True if timestamp was created, False if not
            - MetaFile for snapshot version removed from timestamp (if any)

        Raises:
            BadVersionNumberError: The snapshot version went backwards.
        """
        update_version = force or not self._is_signed_by_current_keys(
            Timestamp.type
        )
        removed = None

        with self.edit_timestamp() as timestamp:
            snapshot_info = self.snapshot_info
            if snapshot_info.version < timestamp.snapshot_meta.version:
                raise BadVersionNumberError("snapshot version rollback")

            if snapshot_info != timestamp.snapshot_meta:
                update_version = True
                removed = timestamp.snapshot_meta
                timestamp.snapshot_meta = deepcopy(snapshot_info)

            if not update_version:
                raise AbortEdit("Skip timestamp: No snapshot changes")

        if not update_version:
            # this is reachable as edit_timestamp() handles AbortEdit
            logger.debug("Timestamp update not needed")  # type: ignore[unreachable]
        else:
            logger.debug("Timestamp v%d", timestamp.version)
        return update_version, removed

    def update_snapshot_and_timestamp(self) -> bool:
        """Run the cascade: snapshot, then timestamp.

        Returns True if either tier got a new version.
        """
        snapshot_updated, _ = self.do_snapshot()
        timestamp_updated, _ = self.do_timestamp()
        return snapshot_updated or timestamp_updated
