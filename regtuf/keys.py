# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Role signing keys and their on-disk key store.

Every role of the repository signs with ECDSA P-256 keys. A key is identified
by the hex SHA-256 digest of its DER encoded public key (SubjectPublicKeyInfo),
so the identifier recorded in root metadata can always be recomputed from the
private key file alone.

Key files are unencrypted PEM ``EC PRIVATE KEY`` documents with owner-only
permissions::

    <keys_path>/<role>.key          first key of a role
    <keys_path>/<role>.<n>.key      additional keys of a multi-key role
    <keys_path>/retired/<keyid>.key replaced keys still inside a grace period
    <keys_path>/retired/index.json  role and grace period end of retired keys
"""

import io
import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import iso8601
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from securesystemslib import hash as sslib_hash
from securesystemslib.exceptions import StorageError
from securesystemslib.signer import Key, SSlibKey
from securesystemslib.storage import FilesystemBackend, StorageBackendInterface

from regtuf.exceptions import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

KEY_TYPE = "ecdsa"
KEY_SCHEME = "ecdsa-sha2-nistp256"

_RETIRED_DIR = "retired"
_RETIRED_INDEX = "index.json"


def key_id_for(public_key: ec.EllipticCurvePublicKey) -> str:
    """Return the hex SHA-256 of the DER encoded ``public_key``."""
    der = public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    digest_object = sslib_hash.digest("sha256")
    digest_object.update(der)
    return digest_object.hexdigest()


@dataclass
class KeyInfo:
    """Redacted description of a key, safe to show to operators."""

    keyid: str
    keytype: str
    roles: List[str]

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.keyid, "type": self.keytype, "roles": self.roles}


@dataclass
class RoleKey:
    """An ECDSA P-256 key pair used to sign one role's metadata.

    Attributes:
        keyid: Hex SHA-256 of the DER public key.
        roles: Names of the roles this key is tagged with.
        public_pem: PEM encoded public key, as published in metadata.
        private_key: The private key, if available.
        retired_until: Set for a replaced key: the key keeps co-signing its
            role's metadata until this time, then it is pruned.
    """

    keyid: str
    roles: List[str]
    public_pem: str
    private_key: Optional[ec.EllipticCurvePrivateKey] = field(
        default=None, repr=False
    )
    retired_until: Optional[datetime] = None

    keytype = KEY_TYPE
    scheme = KEY_SCHEME

    @classmethod
    def from_private_key(
        cls, private_key: ec.EllipticCurvePrivateKey, role: str
    ) -> "RoleKey":
        """Build a key tagged ``role``, computing its id and public PEM."""
        public_key = private_key.public_key()
        public_pem = public_key.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")
        return cls(key_id_for(public_key), [role], public_pem, private_key)

    @property
    def public_key(self) -> Key:
        """Public part of the key in metadata form."""
        return SSlibKey(
            self.keyid, self.keytype, self.scheme, {"public": self.public_pem}
        )

    @property
    def is_retired(self) -> bool:
        return self.retired_until is not None

    def info(self) -> KeyInfo:
        return KeyInfo(f"{self.keyid[:16]}...", self.keytype, list(self.roles))

    def private_pem(self) -> bytes:
        if self.private_key is None:
            raise ValueError(f"Key {self.keyid[:7]} has no private key")
        return self.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )


class KeyStore:
    """Generates, persists and reloads per-role ECDSA key pairs.

    Args:
        keys_path: Directory holding the private key files. Created with
            owner-only permissions if missing.
        storage_backend: ``securesystemslib.storage.StorageBackendInterface``
            implementation. Default is ``FilesystemBackend``.

    Raises:
        PersistenceError: ``keys_path`` cannot be created.
    """

    def __init__(
        self,
        keys_path: str,
        storage_backend: Optional[StorageBackendInterface] = None,
    ):
        self.keys_path = keys_path
        self._storage = storage_backend or FilesystemBackend()
        try:
            self._storage.create_folder(keys_path)
            os.chmod(keys_path, 0o700)
        except (StorageError, OSError) as e:
            raise PersistenceError(f"Cannot create {keys_path}") from e

    @property
    def retired_path(self) -> str:
        return os.path.join(self.keys_path, _RETIRED_DIR)

    def key_path(self, role: str, index: int = 0) -> str:
        if index == 0:
            return os.path.join(self.keys_path, f"{role}.key")
        return os.path.join(self.keys_path, f"{role}.{index}.key")

    def _write_private_key(self, key: RoleKey, path: str) -> None:
        pem = io.BytesIO(key.private_pem())
        try:
            self._storage.put(pem, path, restrict=True)
        except StorageError as e:
            raise PersistenceError(f"Cannot write key file {path}") from e

    def _read_private_key(self, path: str, role: str) -> RoleKey:
        if not os.path.isfile(path):
            raise NotFoundError(f"No key file {path}")

        try:
            with self._storage.get(path) as file_obj:
                private_key = serialization.load_pem_private_key(
                    file_obj.read(), password=None
                )
        except (StorageError, ValueError, TypeError) as e:
            raise PersistenceError(f"Cannot load key file {path}") from e

        if not isinstance(private_key, ec.EllipticCurvePrivateKey) or not (
            isinstance(private_key.curve, ec.SECP256R1)
        ):
            raise PersistenceError(f"{path} is not an ECDSA P-256 key")

        return RoleKey.from_private_key(private_key, role)

    @staticmethod
    def new_key(role: str) -> RoleKey:
        """Create a new key pair tagged ``role`` without writing it."""
        return RoleKey.from_private_key(
            ec.generate_private_key(ec.SECP256R1()), role
        )

    def save_key(self, key: RoleKey, index: int = 0) -> None:
        """Write ``key`` as key ``index`` of its role, replacing any file."""
        self._write_private_key(key, self.key_path(key.roles[0], index))

    def generate_key(self, role: str, index: int = 0) -> RoleKey:
        """Create a new key pair tagged ``role`` and write its private key.

        An existing key file for the same role and index is overwritten.
        """
        key = self.new_key(role)
        self.save_key(key, index)
        logger.debug("Generated key %s for %s", key.keyid[:16], role)
        return key

    def load_key(self, role: str, index: int = 0) -> RoleKey:
        """Load a role's private key, recomputing its key id.

        Raises:
            NotFoundError: There is no key file for ``role``.
            PersistenceError: The key file cannot be read or parsed.
        """
        return self._read_private_key(self.key_path(role, index), role)

    def _role_key_indexes(self, role: str) -> List[int]:
        pattern = re.compile(rf"^{re.escape(role)}(?:\.(\d+))?\.key$")
        try:
            names = self._storage.list_folder(self.keys_path)
        except StorageError as e:
            raise PersistenceError(f"Cannot list {self.keys_path}") from e

        indexes = []
        for name in names:
            match = pattern.match(name)
            if match:
                indexes.append(int(match.group(1) or 0))
        return sorted(indexes)

    def load_role_keys(self, role: str) -> List[RoleKey]:
        """Load every key file of ``role``, first key first."""
        return [self.load_key(role, i) for i in self._role_key_indexes(role)]

    def remove_role_keys(self, role: str) -> None:
        """Delete every key file of ``role``."""
        for index in self._role_key_indexes(role):
            try:
                self._storage.remove(self.key_path(role, index))
            except StorageError as e:
                raise PersistenceError(f"Cannot remove key of {role}") from e

    def clear(self) -> None:
        """Delete all key files, including retired keys."""
        try:
            names = self._storage.list_folder(self.keys_path)
            for name in names:
                if name.endswith(".key"):
                    self._storage.remove(os.path.join(self.keys_path, name))
        except StorageError as e:
            raise PersistenceError(f"Cannot clear {self.keys_path}") from e

        for keyid in list(self._read_retired_index()):
            self.remove_retired_key(keyid)

    def _read_retired_index(self) -> Dict[str, Dict[str, str]]:
        path = os.path.join(self.retired_path, _RETIRED_INDEX)
        if not os.path.isfile(path):
            return {}
        try:
            with self._storage.get(path) as file_obj:
                return json.loads(file_obj.read().decode("utf-8"))
        except (StorageError, ValueError) as e:
            raise PersistenceError(f"Cannot read {path}") from e

    def _write_retired_index(self, index: Dict[str, Dict[str, str]]) -> None:
        path = os.path.join(self.retired_path, _RETIRED_INDEX)
        data = json.dumps(index, indent=1, sort_keys=True).encode("utf-8")
        try:
            self._storage.put(io.BytesIO(data), path, restrict=True)
        except StorageError as e:
            raise PersistenceError(f"Cannot write {path}") from e

    def retire_key(self, key: RoleKey, prune_after: datetime) -> None:
        """Keep a replaced key until ``prune_after``."""
        try:
            self._storage.create_folder(self.retired_path)
        except StorageError as e:
            raise PersistenceError(f"Cannot create {self.retired_path}") from e

        key.retired_until = prune_after
        self._write_private_key(
            key, os.path.join(self.retired_path, f"{key.keyid}.key")
        )
        index = self._read_retired_index()
        index[key.keyid] = {
            "role": key.roles[0],
            "prune_after": prune_after.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        self._write_retired_index(index)

    def load_retired_keys(self) -> List[RoleKey]:
        keys = []
        for keyid, entry in self._read_retired_index().items():
            path = os.path.join(self.retired_path, f"{keyid}.key")
            try:
                key = self._read_private_key(path, entry["role"])
            except NotFoundError:
                logger.warning("Retired key %s is missing", keyid[:16])
                continue
            key.retired_until = iso8601.parse_date(entry["prune_after"])
            keys.append(key)
        return keys

    def remove_retired_key(self, keyid: str) -> None:
        index = self._read_retired_index()
        path = os.path.join(self.retired_path, f"{keyid}.key")
        try:
            if os.path.isfile(path):
                self._storage.remove(path)
        except StorageError as e:
            raise PersistenceError(f"Cannot remove retired key {keyid}") from e

        if index.pop(keyid, None) is not None:
            self._write_retired_index(index)
