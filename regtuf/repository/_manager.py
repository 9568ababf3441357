# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Metadata manager: the signed trust metadata of one registry repository"""

import logging
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import IO, Any, Callable, Dict, List, Optional, Union

import fasteners
from securesystemslib.storage import StorageBackendInterface

from regtuf.api.metadata import (
    EXPIRES_FORMAT,
    DelegatedRole,
    Metadata,
    MetaFile,
    Role,
    Root,
    RootVerificationResult,
    Snapshot,
    TargetFile,
    Targets,
    Timestamp,
    VerificationResult,
)
from regtuf.config import RepositoryConfig
from regtuf.exceptions import (
    ConfigurationError,
    IntegrityError,
    LengthOrHashMismatchError,
    NotFoundError,
    PersistenceError,
    ThresholdNotMetError,
    TrustAnchorError,
    UninitializedError,
)
from regtuf.keys import KeyInfo, KeyStore, RoleKey
from regtuf.repository._repository import Repository
from regtuf.repository._store import RepositoryStore
from regtuf.signer import RoleSigner

_TOP_LEVEL_ROLES = (Root.type, Targets.type, Snapshot.type, Timestamp.type)

_signed_init = {
    Root.type: Root,
    Snapshot.type: Snapshot,
    Targets.type: Targets,
    Timestamp.type: Timestamp,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_target_name(name: str) -> None:
    """Accept only relative "/" separated paths inside the targets dir."""
    if not isinstance(name, str) or not name:
        raise ValueError("Target name must be a non empty string")
    if name.startswith("/") or "\\" in name:
        raise ValueError(f"Invalid target name {name!r}")
    if any(part in ("", ".", "..") for part in name.split("/")):
        raise ValueError(f"Invalid target name {name!r}")


@dataclass
class TargetVerificationResult:
    """Outcome of checking content against the trusted target entry.

    Attributes:
        name: Target name.
        verified: True if length and sha256 match.
        error: The mismatch found, None when verified.
    """

    name: str
    verified: bool
    error: Optional[IntegrityError] = None

    def __bool__(self) -> bool:
        return self.verified


@dataclass
class RoleStatus:
    version: int
    expires: datetime
    expired: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "expires": self.expires.strftime(EXPIRES_FORMAT),
            "expired": self.expired,
        }


@dataclass
class RepositoryStatus:
    """Summary of the repository state, safe to show to operators.

    Key ids are truncated in ``keys``.
    """

    initialized: bool
    key_count: int = 0
    keys: List[KeyInfo] = field(default_factory=list)
    roles: Dict[str, RoleStatus] = field(default_factory=dict)
    target_count: int = 0
    delegation_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "key_count": self.key_count,
            "keys": [key.to_dict() for key in self.keys],
            "roles": {name: st.to_dict() for name, st in self.roles.items()},
            "target_count": self.target_count,
            "delegation_count": self.delegation_count,
        }


class MetadataManager(Repository):
    """Owns the four metadata tiers of a repository and every change to them.

    All changes go through ``edit()``: ``open()`` hands out a copy of the
    current metadata, ``close()`` bumps the version, resets the expiry, signs
    with every key of the role, checks the signature threshold and writes the
    file before the new version replaces the in-memory one.

    Public operations hold ``_lock``, a reader/writer lock: mutations take the
    write lock for the in-memory change and all resulting disk writes, reads
    take the read lock. The ``Repository`` methods (``edit()``,
    ``do_snapshot()``, ...) take no lock and are only called from locked
    operations.

    Args:
        config: Repository configuration. Default is ``RepositoryConfig()``.
        logger: Logger to use. Default is the module logger.
        clock: Callable returning the current time as an aware UTC datetime.
        storage_backend: ``securesystemslib.storage.StorageBackendInterface``
            implementation for metadata, target and key files.

    Raises:
        ConfigurationError: Invalid configuration, or the repository or keys
            directory cannot be created.
    """

    def __init__(
        self,
        config: Optional[RepositoryConfig] = None,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        storage_backend: Optional[StorageBackendInterface] = None,
    ):
        self.config = config or RepositoryConfig()
        self.config.validate()
        self._log = logger or logging.getLogger(__name__)
        self._clock = clock or _utcnow
        self._lock = fasteners.ReaderWriterLock()

        self._store = RepositoryStore(self.config.repo_path, storage_backend)
        try:
            self._store.create_folders()
            self._keystore = KeyStore(self.config.keys_path, storage_backend)
        except PersistenceError as e:
            raise ConfigurationError(str(e)) from e

        # current version of each top-level role
        self._metadata: Dict[str, Metadata] = {}
        # all keys with a private key, active and retired
        self._keyring: Dict[str, RoleKey] = {}
        self._signer = RoleSigner(self._keyring)

        try:
            self.load_repository()
        except TrustAnchorError as e:
            self._log.warning("Repository not loaded: %s", e)

    # Repository implementation

    @property
    def targets_infos(self) -> Dict[str, MetaFile]:
        md = self._metadata.get(Targets.type)
        if md is None:
            return {}
        meta = MetaFile.from_data(
            md.signed.version, md.signed_bytes, ["sha256"]
        )
        return {"targets.json": meta}

    @property
    def snapshot_info(self) -> MetaFile:
        md = self._metadata.get(Snapshot.type)
        if md is None:
            return MetaFile(1)
        return MetaFile.from_data(
            md.signed.version, md.signed_bytes, ["sha256"]
        )

    def open(self, role: str) -> Metadata:
        md = self._metadata.get(role)
        if md is None:
            md = Metadata(_signed_init[role]())
            # this makes version bumping in close() simpler
            md.signed.version = 0
            return md

        return deepcopy(md)

    def _get_verification_result(
        self, role: str, md: Metadata
    ) -> Union[VerificationResult, RootVerificationResult]:
        """Verify a role's metadata with the committed root"""
        if role == Root.type:
            current = self._metadata.get(Root.type)
            previous = current.signed if current is not None else None
            return md.signed.get_root_verification_result(
                previous, md.signed_bytes, md.signatures
            )
        return self.root().get_verification_result(
            role, md.signed_bytes, md.signatures
        )

    def close(self, role: str, md: Metadata) -> None:
        now = self._clock()
        # retired keys only co-sign inside their grace period
        self._prune_retired_keys(now)

        md.signed.version += 1
        md.signed.expires = now + self.config.expiry_for(role)

        self._signer.sign_metadata(role, md)

        # Only write metadata that meets its threshold
        vr = self._get_verification_result(role, md)
        if not vr:
            raise ThresholdNotMetError(
                f"Role {role} v{md.signed.version} does not meet its "
                "signature threshold"
            )
        keyids = [keyid[:7] for keyid in vr.signed]
        verify_str = f"verified with keys [{', '.join(keyids)}]"
        self._log.debug("Role %s v%d: %s", role, md.signed.version, verify_str)

        self._store.save_meta_file(f"{role}.json", md)
        self._metadata[role] = md

    # Loading

    def _require(self, *roles: str) -> None:
        for role in roles:
            if role not in self._metadata:
                raise UninitializedError(f"No {role} metadata: initialize")

    @fasteners.write_locked
    def load_repository(self) -> None:
        """Reload metadata and keys from disk, replacing in-memory state.

        Root is mandatory and must be signed by a threshold of its own keys.
        Problems with the other tiers or with key files are logged and the
        affected item is left out.

        Raises:
            TrustAnchorError: root.json is missing, unparseable or not
                self-signed.
        """
        try:
            root_md = self._store.load_meta_file("root.json")
        except PersistenceError as e:
            raise TrustAnchorError("Cannot load root.json") from e
        if root_md is None:
            raise TrustAnchorError("root.json not found")
        if not isinstance(root_md.signed, Root):
            raise TrustAnchorError("root.json does not contain root metadata")

        root = root_md.signed
        vr = root.get_root_verification_result(
            None, root_md.signed_bytes, root_md.signatures
        )
        if not vr:
            raise TrustAnchorError(
                f"root v{root.version} is not signed by its own keys"
            )

        metadata: Dict[str, Metadata] = {Root.type: root_md}
        for role in (Targets.type, Snapshot.type, Timestamp.type):
            try:
                md = self._store.load_meta_file(f"{role}.json")
            except PersistenceError as e:
                self._log.warning("Cannot load %s.json: %s", role, e)
                continue
            if md is None:
                self._log.warning("%s.json not found", role)
                continue
            if md.signed.type != role:
                self._log.warning("%s.json contains %s", role, md.signed.type)
                continue
            if not root.get_verification_result(
                role, md.signed_bytes, md.signatures
            ):
                self._log.warning(
                    "%s v%d: threshold not met", role, md.signed.version
                )
            metadata[role] = md

        roles = list(_TOP_LEVEL_ROLES)
        targets_md = metadata.get(Targets.type)
        authorized = set(root.keys)
        if targets_md is not None and targets_md.signed.delegations:
            roles.extend(targets_md.signed.delegations.roles)
            authorized.update(targets_md.signed.delegations.keys)

        keyring: Dict[str, RoleKey] = {}
        for role in roles:
            try:
                keys = self._keystore.load_role_keys(role)
            except PersistenceError as e:
                self._log.warning("Cannot load keys of %s: %s", role, e)
                continue
            for key in keys:
                if key.keyid not in authorized:
                    self._log.warning(
                        "Key %s of %s is not authorized by metadata",
                        key.keyid[:16],
                        role,
                    )
                keyring[key.keyid] = key
        try:
            retired = self._keystore.load_retired_keys()
        except PersistenceError as e:
            self._log.warning("Cannot load retired keys: %s", e)
            retired = []
        for key in retired:
            keyring.setdefault(key.keyid, key)

        self._metadata.clear()
        self._metadata.update(metadata)
        self._keyring.clear()
        self._keyring.update(keyring)
        self._log.info(
            "Loaded repository: root v%d, %d keys", root.version, len(keyring)
        )

    # Mutations

    @fasteners.write_locked
    def initialize(self) -> None:
        """Create a new repository with fresh keys for every top-level role.

        This is destructive: existing metadata and all key files are
        replaced.
        """
        if self._metadata:
            self._log.warning(
                "Overwriting existing repository at %s", self.config.repo_path
            )
        self._keystore.clear()
        self._metadata.clear()
        self._keyring.clear()

        with self.edit_root() as root:
            root.consistent_snapshot = self.config.consistent_snapshot
            for role in _TOP_LEVEL_ROLES:
                threshold = self.config.threshold_for(role)
                root.roles[role].threshold = threshold
                for index in range(threshold):
                    key = self._keystore.generate_key(role, index)
                    self._keyring[key.keyid] = key
                    root.add_key(key.public_key, role)

        with self.edit_targets():
            pass

        self.update_snapshot_and_timestamp()
        self._log.info(
            "Initialized repository at %s with %d keys",
            self.config.repo_path,
            len(self._keyring),
        )

    @fasteners.write_locked
    def add_target(
        self,
        name: str,
        data: Union[bytes, IO[bytes]],
        custom: Optional[Dict[str, Any]] = None,
    ) -> TargetFile:
        """Add or replace target ``name`` and store its content.

        Raises:
            ValueError: ``name`` is not a relative path inside the targets
                directory.
        """
        _validate_target_name(name)
        self._require(Targets.type, Snapshot.type, Timestamp.type)

        target = TargetFile.from_data(name, data, custom)
        self._store.write_target(name, data)
        with self.edit_targets() as targets:
            targets.targets[name] = target

        self.update_snapshot_and_timestamp()
        self._log.info("Added target %s (%d bytes)", name, target.length)
        return deepcopy(target)

    @fasteners.write_locked
    def remove_target(self, name: str) -> None:
        """Remove target ``name`` and its content.

        Raises:
            NotFoundError: No such target.
        """
        self._require(Targets.type, Snapshot.type, Timestamp.type)
        if name not in self._metadata[Targets.type].signed.targets:
            raise NotFoundError(f"Target {name} not found")

        with self.edit_targets() as targets:
            del targets.targets[name]

        try:
            self._store.remove_target(name)
        except PersistenceError as e:
            self._log.warning("Content of %s not removed: %s", name, e)

        self.update_snapshot_and_timestamp()
        self._log.info("Removed target %s", name)

    def _grace_period_end(self) -> datetime:
        timestamp = self._metadata.get(Timestamp.type)
        if timestamp is None:
            return self._clock()
        return timestamp.signed.expires

    def _store_role_keys(
        self, role: str, old_keys: List[RoleKey], new_keys: List[RoleKey]
    ) -> None:
        """Retire ``old_keys`` and write ``new_keys`` as the keys of ``role``.

        Only called once metadata authorizing ``new_keys`` is committed.
        """
        prune_after = self._grace_period_end()
        for key in old_keys:
            self._keystore.retire_key(key, prune_after)
            self._log.info(
                "Retired key %s of %s until %s",
                key.keyid[:16],
                role,
                prune_after.strftime(EXPIRES_FORMAT),
            )
        self._keystore.remove_role_keys(role)
        for index, key in enumerate(new_keys):
            self._keystore.save_key(key, index)

    @fasteners.write_locked
    def rotate_key(self, role: str) -> List[str]:
        """Replace the keys of a top-level or delegated role.

        The replaced keys are retired: they keep co-signing the role's
        metadata until the current timestamp expires, so that clients
        holding the previous root can verify the new one.

        Key files are only changed after the metadata authorizing the new
        keys is written. If that write fails the old keys stay in place.

        Returns the new key ids.

        Raises:
            NotFoundError: ``role`` is neither a top-level nor a delegated
                role.
        """
        self._require(*_TOP_LEVEL_ROLES)

        if role in _TOP_LEVEL_ROLES:
            current: Role = self.root().roles[role]
        else:
            try:
                current = self.targets().get_delegated_role(role)
            except ValueError as e:
                raise NotFoundError(f"Role {role} not found") from e

        old_keys = [
            self._keyring[keyid]
            for keyid in current.keyids
            if keyid in self._keyring
        ]
        new_keys = [
            self._keystore.new_key(role) for _ in range(current.threshold)
        ]
        for key in new_keys:
            self._keyring[key.keyid] = key

        try:
            if role in _TOP_LEVEL_ROLES:
                with self.edit_root() as root:
                    for keyid in list(root.roles[role].keyids):
                        root.revoke_key(keyid, role)
                    for key in new_keys:
                        root.add_key(key.public_key, role)
            else:
                with self.edit_targets() as targets:
                    for keyid in list(current.keyids):
                        targets.revoke_key(keyid, role)
                    for key in new_keys:
                        targets.add_key(key.public_key, role)
        except Exception:
            for key in new_keys:
                del self._keyring[key.keyid]
            raise

        self._store_role_keys(role, old_keys, new_keys)
        if role == Targets.type:
            # re-sign targets with the new keys
            with self.edit_targets():
                pass

        self.update_snapshot_and_timestamp()
        keyids = [key.keyid for key in new_keys]
        self._log.info(
            "Rotated keys of %s: %s", role, [k[:16] for k in keyids]
        )
        return keyids

    @fasteners.write_locked
    def add_delegation(
        self,
        name: str,
        paths: List[str],
        threshold: int = 1,
        terminating: bool = False,
    ) -> DelegatedRole:
        """Delegate ``paths`` to a new role with dedicated keys.

        Raises:
            ValueError: Duplicate or invalid name, empty paths or threshold
                below 1.
        """
        self._require(Targets.type, Snapshot.type, Timestamp.type)
        current = self._metadata[Targets.type].signed
        if current.delegations and name in current.delegations.roles:
            raise ValueError(f"Delegation {name} already exists")

        role = DelegatedRole(name, [], threshold, terminating, list(paths))
        keys = [self._keystore.new_key(name) for _ in range(threshold)]
        with self.edit_targets() as targets:
            targets.add_delegated_role(role)
            for key in keys:
                targets.add_key(key.public_key, name)

        for index, key in enumerate(keys):
            self._keyring[key.keyid] = key
            self._keystore.save_key(key, index)

        self.update_snapshot_and_timestamp()
        self._log.info("Added delegation %s for %s", name, paths)
        return deepcopy(self.targets().get_delegated_role(name))

    @fasteners.write_locked
    def remove_delegation(self, name: str) -> None:
        """Remove delegated role ``name`` and delete its keys.

        Raises:
            NotFoundError: No such delegation.
        """
        self._require(Targets.type, Snapshot.type, Timestamp.type)
        try:
            self.targets().get_delegated_role(name)
        except ValueError as e:
            raise NotFoundError(f"Delegation {name} not found") from e

        with self.edit_targets() as targets:
            targets.remove_delegated_role(name)

        for keyid, key in list(self._keyring.items()):
            if name not in key.roles:
                continue
            del self._keyring[keyid]
            if key.is_retired:
                self._keystore.remove_retired_key(keyid)
        self._keystore.remove_role_keys(name)

        self.update_snapshot_and_timestamp()
        self._log.info("Removed delegation %s", name)

    @fasteners.write_locked
    def refresh_timestamp(self) -> None:
        """Make a new timestamp version with a fresh expiry."""
        self._require(Root.type, Snapshot.type)
        self.do_timestamp(force=True)

    def _prune_retired_keys(self, now: datetime) -> None:
        for keyid, key in list(self._keyring.items()):
            if key.retired_until is None or now <= key.retired_until:
                continue
            self._keystore.remove_retired_key(keyid)
            del self._keyring[keyid]
            self._log.info("Pruned retired key %s of %s", keyid[:16], key.roles)

    @fasteners.write_locked
    def auto_refresh(self) -> bool:
        """Renew snapshot and timestamp before they expire.

        Retired keys past their grace period are pruned first. Snapshot is
        renewed (and timestamp re-pointed at it) when it expires within
        ``snapshot_refresh_margin``; otherwise timestamp is renewed when it
        expires within ``timestamp_refresh_margin``.

        Returns True if any metadata was written.
        """
        self._require(*_TOP_LEVEL_ROLES)
        now = self._clock()
        self._prune_retired_keys(now)

        snapshot = self._metadata[Snapshot.type].signed
        timestamp = self._metadata[Timestamp.type].signed
        if snapshot.expires <= now + self.config.snapshot_refresh_margin:
            self.do_snapshot(force=True)
            self.do_timestamp()
            self._log.info(
                "Refreshed snapshot v%d and timestamp v%d",
                self._metadata[Snapshot.type].signed.version,
                self._metadata[Timestamp.type].signed.version,
            )
            return True

        if timestamp.expires <= now + self.config.timestamp_refresh_margin:
            self.do_timestamp(force=True)
            self._log.info(
                "Refreshed timestamp v%d",
                self._metadata[Timestamp.type].signed.version,
            )
            return True

        return False

    # Reads

    @fasteners.read_locked
    def is_initialized(self) -> bool:
        return Root.type in self._metadata

    @fasteners.read_locked
    def get_target(self, name: str) -> TargetFile:
        """Return a copy of target ``name``.

        Raises:
            NotFoundError: No such target.
        """
        self._require(Targets.type)
        try:
            return deepcopy(self._metadata[Targets.type].signed.targets[name])
        except KeyError as e:
            raise NotFoundError(f"Target {name} not found") from e

    @fasteners.read_locked
    def list_targets(self) -> Dict[str, TargetFile]:
        self._require(Targets.type)
        return deepcopy(self._metadata[Targets.type].signed.targets)

    @fasteners.read_locked
    def verify_target(
        self, name: str, data: Union[bytes, IO[bytes]]
    ) -> TargetVerificationResult:
        """Check ``data`` against the length and hashes of target ``name``.

        A mismatch is reported in the result, never raised.

        Raises:
            NotFoundError: No such target.
        """
        self._require(Targets.type)
        target = self._metadata[Targets.type].signed.targets.get(name)
        if target is None:
            raise NotFoundError(f"Target {name} not found")

        try:
            target.verify_length_and_hashes(data)
        except LengthOrHashMismatchError as e:
            self._log.debug("Target %s failed verification: %s", name, e)
            return TargetVerificationResult(name, False, e)

        return TargetVerificationResult(name, True)

    @fasteners.read_locked
    def list_delegations(self) -> List[DelegatedRole]:
        self._require(Targets.type)
        delegations = self._metadata[Targets.type].signed.delegations
        if delegations is None:
            return []
        return [deepcopy(role) for role in delegations.roles.values()]

    @fasteners.read_locked
    def check_expiry(self) -> List[str]:
        """Return the names of the roles whose metadata has expired."""
        now = self._clock()
        expired = []
        for role in _TOP_LEVEL_ROLES:
            md = self._metadata.get(role)
            if md is not None and md.signed.is_expired(now):
                self._log.warning(
                    "%s v%d expired at %s",
                    role,
                    md.signed.version,
                    md.signed.expires.strftime(EXPIRES_FORMAT),
                )
                expired.append(role)
        return expired

    def _active_keys(self) -> List[RoleKey]:
        return [key for key in self._keyring.values() if not key.is_retired]

    @fasteners.read_locked
    def get_status(self) -> RepositoryStatus:
        now = self._clock()
        active = self._active_keys()
        status = RepositoryStatus(
            initialized=Root.type in self._metadata,
            key_count=len(active),
            keys=[key.info() for key in active],
        )
        for role in _TOP_LEVEL_ROLES:
            md = self._metadata.get(role)
            if md is None:
                continue
            status.roles[role] = RoleStatus(
                md.signed.version, md.signed.expires, md.signed.is_expired(now)
            )

        targets_md = self._metadata.get(Targets.type)
        if targets_md is not None:
            status.target_count = len(targets_md.signed.targets)
            if targets_md.signed.delegations is not None:
                status.delegation_count = len(
                    targets_md.signed.delegations.roles
                )
        return status

    @fasteners.read_locked
    def export_public_keys(self) -> Dict[str, str]:
        """Return the PEM public key of every active key, by key id."""
        return {key.keyid: key.public_pem for key in self._active_keys()}

    @fasteners.read_locked
    def get_root_metadata(self) -> bytes:
        return self._store.read_meta_bytes("root.json")

    @fasteners.read_locked
    def get_targets_metadata(self) -> bytes:
        return self._store.read_meta_bytes("targets.json")

    @fasteners.read_locked
    def get_snapshot_metadata(self) -> bytes:
        return self._store.read_meta_bytes("snapshot.json")

    @fasteners.read_locked
    def get_timestamp_metadata(self) -> bytes:
        return self._store.read_meta_bytes("timestamp.json")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config.repo_path!r})"

