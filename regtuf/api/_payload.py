# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0


"""Signed payload classes of the four metadata tiers."""

import abc
import io
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    IO,
    Any,
    ClassVar,
    Dict,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

import iso8601
from securesystemslib import exceptions as sslib_exceptions
from securesystemslib import hash as sslib_hash
from securesystemslib.signer import Key, Signature

from regtuf.exceptions import LengthOrHashMismatchError, UnsignedMetadataError
from regtuf.signer import verify_signature

_ROOT = "root"
_SNAPSHOT = "snapshot"
_TARGETS = "targets"
_TIMESTAMP = "timestamp"

# Metadata is written with this version; reading requires the same major.
SPECIFICATION_VERSION = ["1", "0", "31"]
TOP_LEVEL_ROLE_NAMES = {_ROOT, _TIMESTAMP, _SNAPSHOT, _TARGETS}

EXPIRES_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Delegated role names double as key file names
_DELEGATION_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")

logger = logging.getLogger(__name__)

# T is a Generic type constraint for container payloads
T = TypeVar("T", "Root", "Timestamp", "Snapshot", "Targets")


class Signed(metaclass=abc.ABCMeta):
    """A base class for the signed part of a metadata document.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        version: Metadata version number. If None, then 1 is assigned.
        spec_version: Supported specification version. If None, then the
            version currently supported by the library is assigned.
        expires: Metadata expiry date. If None, then current date and time
            is assigned.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError: Invalid arguments.
    """

    type: ClassVar[str] = "signed"

    @property
    def _type(self) -> str:
        return self.type

    @property
    def expires(self) -> datetime:
        return self._expires

    @expires.setter
    def expires(self, value: datetime) -> None:
        value = value.replace(microsecond=0)
        if value.tzinfo is None:
            # Naive datetime: just make it UTC
            value = value.replace(tzinfo=timezone.utc)
        self._expires = value.astimezone(timezone.utc)

    def __init__(
        self,
        version: Optional[int],
        spec_version: Optional[str],
        expires: Optional[datetime],
        unrecognized_fields: Optional[Dict[str, Any]],
    ):
        if spec_version is None:
            spec_version = ".".join(SPECIFICATION_VERSION)
        spec_list = spec_version.split(".")
        if len(spec_list) not in [2, 3] or not all(
            el.isdigit() for el in spec_list
        ):
            raise ValueError(f"Failed to parse spec_version {spec_version}")

        if spec_list[0] != SPECIFICATION_VERSION[0]:
            raise ValueError(f"Unsupported spec_version {spec_version}")

        self.spec_version = spec_version

        self.expires = expires or datetime.now(timezone.utc)

        if version is None:
            version = 1
        elif version <= 0:
            raise ValueError(f"version must be > 0, got {version}")
        self.version = version

        if unrecognized_fields is None:
            unrecognized_fields = {}

        self.unrecognized_fields = unrecognized_fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Signed):
            return False

        return (
            self.type == other.type
            and self.version == other.version
            and self.spec_version == other.spec_version
            and self.expires == other.expires
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @abc.abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Serialize and return a dict representation of self."""
        raise NotImplementedError

    @classmethod
    @abc.abstractmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Signed":
        """Deserialization helper, creates object from json/dict
        representation.
        """
        raise NotImplementedError

    @classmethod
    def _common_fields_from_dict(
        cls, signed_dict: Dict[str, Any]
    ) -> Tuple[int, str, datetime]:
        """Pop the fields shared by all tiers from ``signed_dict``.

        The result is passed as leading positional arguments to a subclass
        constructor.
        """
        _type = signed_dict.pop("_type")
        if _type != cls.type:
            raise ValueError(f"Expected type {cls.type}, got {_type}")

        version = signed_dict.pop("version")
        spec_version = signed_dict.pop("spec_version")
        expires_str = signed_dict.pop("expires")
        try:
            expires = iso8601.parse_date(expires_str)
        except iso8601.ParseError as e:
            raise ValueError(f"Invalid expires {expires_str}") from e

        return version, spec_version, expires

    def _common_fields_to_dict(self) -> Dict[str, Any]:
        return {
            "_type": self._type,
            "version": self.version,
            "spec_version": self.spec_version,
            "expires": self.expires.strftime(EXPIRES_FORMAT),
            **self.unrecognized_fields,
        }

    def is_expired(self, reference_time: Optional[datetime] = None) -> bool:
        """Check metadata expiration against a reference time.

        Args:
            reference_time: Time to check expiration date against. Default is
                current UTC date and time.

        Returns:
            ``True`` if the reference time is past the expiration time.
        """
        if reference_time is None:
            reference_time = datetime.now(timezone.utc)

        return reference_time > self.expires


class Role:
    """Keys and signature threshold accepted for one role's metadata.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        keyids: Roles signing key identifiers.
        threshold: Number of keys required to sign this role's metadata.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError: Invalid arguments.
    """

    def __init__(
        self,
        keyids: List[str],
        threshold: int,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        if len(set(keyids)) != len(keyids):
            raise ValueError(f"Nonunique keyids: {keyids}")
        if threshold < 1:
            raise ValueError("threshold should be at least 1!")
        self.keyids = keyids
        self.threshold = threshold
        if unrecognized_fields is None:
            unrecognized_fields = {}

        self.unrecognized_fields = unrecognized_fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return False

        return (
            self.keyids == other.keyids
            and self.threshold == other.threshold
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, role_dict: Dict[str, Any]) -> "Role":
        """Create ``Role`` object from its json/dict representation.

        Raises:
            ValueError, KeyError: Invalid arguments.
        """
        keyids = role_dict.pop("keyids")
        threshold = role_dict.pop("threshold")
        # All fields left in the role_dict are unrecognized.
        return cls(keyids, threshold, role_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyids": self.keyids,
            "threshold": self.threshold,
            **self.unrecognized_fields,
        }


@dataclass
class VerificationResult:
    """Signature verification result for one role.

    Attributes:
        threshold: Number of required signatures.
        signed: dict of keyid to Key, containing keys that have signed.
        unsigned: dict of keyid to Key, containing keys that have not signed.
    """

    threshold: int
    signed: Dict[str, Key]
    unsigned: Dict[str, Key]

    def __bool__(self) -> bool:
        return self.verified

    @property
    def verified(self) -> bool:
        """True if threshold of signatures is met."""
        return len(self.signed) >= self.threshold


@dataclass
class RootVerificationResult:
    """Signature verification result for root metadata.

    A new root version must be verified by itself and by the previous root
    version. For the first root version both results are identical.

    Attributes:
        first: Result against the previous root
        second: Result against the new root
    """

    first: VerificationResult
    second: VerificationResult

    def __bool__(self) -> bool:
        return self.verified

    @property
    def verified(self) -> bool:
        return self.first.verified and self.second.verified

    @property
    def signed(self) -> Dict[str, Key]:
        return {**self.first.signed, **self.second.signed}


class _DelegatorMixin(metaclass=abc.ABCMeta):
    """Class that implements verify_delegate() for Root and Targets"""

    @abc.abstractmethod
    def get_delegated_role(self, delegated_role: str) -> Role:
        """Return the role object for the given delegated role.

        Raises ValueError if delegated_role is not actually delegated.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def get_key(self, keyid: str) -> Key:
        """Return the key object for the given keyid.

        Raises ValueError if key is not found.
        """
        raise NotImplementedError

    def get_verification_result(
        self,
        delegated_role: str,
        payload: bytes,
        signatures: Dict[str, Signature],
    ) -> VerificationResult:
        """Return signature threshold verification result for delegated role.

        Unlike ``verify_delegate()`` this method does not raise if the role
        metadata is not fully verified.

        Args:
            delegated_role: Name of the delegated role to verify
            payload: Signed payload bytes for the delegated role
            signatures: Signatures over payload bytes

        Raises:
            ValueError: no delegation was found for ``delegated_role``.
        """
        role = self.get_delegated_role(delegated_role)

        signed = {}
        unsigned = {}

        for keyid in role.keyids:
            try:
                key = self.get_key(keyid)
            except ValueError:
                logger.info("No key for keyid %s", keyid[:7])
                continue

            if keyid not in signatures:
                unsigned[keyid] = key
                logger.debug("No signature for keyid %s", keyid[:7])
                continue

            try:
                verify_signature(key, signatures[keyid], payload)
                signed[keyid] = key
            except sslib_exceptions.UnverifiedSignatureError:
                unsigned[keyid] = key
                logger.info(
                    "Key %s failed to verify %s", keyid[:7], delegated_role
                )

        return VerificationResult(role.threshold, signed, unsigned)

    def verify_delegate(
        self,
        delegated_role: str,
        payload: bytes,
        signatures: Dict[str, Signature],
    ) -> None:
        """Verify that ``signatures`` meet the threshold of ``delegated_role``.

        Raises:
            UnsignedMetadataError: ``delegated_role`` was not signed with
                required threshold of keys.
            ValueError: no delegation was found for ``delegated_role``.
        """
        result = self.get_verification_result(
            delegated_role, payload, signatures
        )
        if not result:
            raise UnsignedMetadataError(
                f"{delegated_role} was signed by {len(result.signed)}/"
                f"{result.threshold} keys"
            )


class Root(Signed, _DelegatorMixin):
    """The signed part of root metadata: the trust anchor.

    Parameters listed below are also instance attributes.

    Args:
        version: Metadata version number. Default is 1.
        spec_version: Supported specification version. Default is the
            version currently supported by the library.
        expires: Metadata expiry date. Default is current date and time.
        keys: Dictionary of keyids to Keys. Defines the keys used in ``roles``.
            Default is empty dictionary.
        roles: Dictionary of role names to Roles. Default is a dictionary of
            top level roles without keys and threshold of 1.
        consistent_snapshot: ``True`` if repository supports consistent
            snapshots. Default is True.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError: Invalid arguments.
    """

    type = _ROOT

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        keys: Optional[Dict[str, Key]] = None,
        roles: Optional[Dict[str, Role]] = None,
        consistent_snapshot: Optional[bool] = True,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.consistent_snapshot = consistent_snapshot
        self.keys = keys if keys is not None else {}

        if roles is None:
            roles = {r: Role([], 1) for r in TOP_LEVEL_ROLE_NAMES}
        elif set(roles) != TOP_LEVEL_ROLE_NAMES:
            raise ValueError("Role names must be the top-level metadata roles")
        self.roles = roles

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Root):
            return False

        return (
            super().__eq__(other)
            and self.keys == other.keys
            and self.roles == other.roles
            and self.consistent_snapshot == other.consistent_snapshot
        )

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Root":
        """Create ``Root`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        common_args = cls._common_fields_from_dict(signed_dict)
        consistent_snapshot = signed_dict.pop("consistent_snapshot", None)
        keys = signed_dict.pop("keys")
        roles = signed_dict.pop("roles")

        for keyid, key_dict in keys.items():
            keys[keyid] = Key.from_dict(keyid, key_dict)
        for role_name, role_dict in roles.items():
            roles[role_name] = Role.from_dict(role_dict)

        # All fields left in the signed_dict are unrecognized.
        return cls(*common_args, keys, roles, consistent_snapshot, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        root_dict = self._common_fields_to_dict()
        keys = {keyid: key.to_dict() for (keyid, key) in self.keys.items()}
        roles = {name: role.to_dict() for name, role in self.roles.items()}
        if self.consistent_snapshot is not None:
            root_dict["consistent_snapshot"] = self.consistent_snapshot

        root_dict.update({"keys": keys, "roles": roles})
        return root_dict

    def add_key(self, key: Key, role: str) -> None:
        """Authorize ``key`` for top-level role ``role``.

        Raises:
            ValueError: ``role`` doesn't exist.
        """
        if role not in self.roles:
            raise ValueError(f"Role {role} doesn't exist")
        if key.keyid not in self.roles[role].keyids:
            self.roles[role].keyids.append(key.keyid)
        self.keys[key.keyid] = key

    def revoke_key(self, keyid: str, role: str) -> None:
        """Remove ``keyid`` from ``role``, and from ``keys`` once unused.

        Raises:
            ValueError: ``role`` doesn't exist or doesn't include the key.
        """
        if role not in self.roles:
            raise ValueError(f"Role {role} doesn't exist")
        if keyid not in self.roles[role].keyids:
            raise ValueError(f"Key with id {keyid} is not used by {role}")
        self.roles[role].keyids.remove(keyid)
        for keyinfo in self.roles.values():
            if keyid in keyinfo.keyids:
                return

        del self.keys[keyid]

    def get_delegated_role(self, delegated_role: str) -> Role:
        if delegated_role not in self.roles:
            raise ValueError(f"Delegated role {delegated_role} not found")

        return self.roles[delegated_role]

    def get_key(self, keyid: str) -> Key:
        if keyid not in self.keys:
            raise ValueError(f"Key {keyid} not found")

        return self.keys[keyid]

    def get_root_verification_result(
        self,
        previous: Optional["Root"],
        payload: bytes,
        signatures: Dict[str, Signature],
    ) -> RootVerificationResult:
        """Verify root ``payload`` against this root and ``previous``.

        ``previous`` is None for the first root version; otherwise it must be
        the version right before this one.

        Raises:
            ValueError: The root versions are not sequential.
        """

        if previous is None:
            previous = self
        elif self.version != previous.version + 1:
            versions = f"v{previous.version} and v{self.version}"
            raise ValueError(
                f"Expected sequential root versions, got {versions}."
            )

        return RootVerificationResult(
            previous.get_verification_result(Root.type, payload, signatures),
            self.get_verification_result(Root.type, payload, signatures),
        )


class BaseFile:
    """Length and hash helpers shared by ``MetaFile`` and ``TargetFile``."""

    @staticmethod
    def _verify_hashes(
        data: Union[bytes, IO[bytes]], expected_hashes: Dict[str, str]
    ) -> None:
        is_bytes = isinstance(data, bytes)
        for algo, exp_hash in expected_hashes.items():
            try:
                if is_bytes:
                    digest_object = sslib_hash.digest(algo)
                    digest_object.update(data)
                else:
                    # if data is not bytes, assume it is a file object
                    digest_object = sslib_hash.digest_fileobject(data, algo)
            except (
                sslib_exceptions.UnsupportedAlgorithmError,
                sslib_exceptions.FormatError,
            ) as e:
                raise LengthOrHashMismatchError(
                    f"Unsupported algorithm '{algo}'"
                ) from e

            observed_hash = digest_object.hexdigest()
            if observed_hash != exp_hash:
                raise LengthOrHashMismatchError(
                    f"Observed {algo} {observed_hash} does not match "
                    f"expected {exp_hash}"
                )

    @staticmethod
    def _data_length(data: Union[bytes, IO[bytes]]) -> int:
        if isinstance(data, bytes):
            return len(data)
        data.seek(0, io.SEEK_END)
        return data.tell()

    @classmethod
    def _verify_length(
        cls, data: Union[bytes, IO[bytes]], expected_length: int
    ) -> None:
        observed_length = cls._data_length(data)
        if observed_length != expected_length:
            raise LengthOrHashMismatchError(
                f"Observed length {observed_length} does not match "
                f"expected length {expected_length}"
            )

    @staticmethod
    def _validate_hashes(hashes: Dict[str, str]) -> None:
        if not hashes:
            raise ValueError("Hashes must be a non empty dictionary")
        for key, value in hashes.items():
            if not (isinstance(key, str) and isinstance(value, str)):
                raise TypeError("Hashes items must be strings")

    @staticmethod
    def _validate_length(length: int) -> None:
        if length < 0:
            raise ValueError(f"Length must be >= 0, got {length}")

    @classmethod
    def _get_length_and_hashes(
        cls,
        data: Union[bytes, IO[bytes]],
        hash_algorithms: Optional[List[str]],
    ) -> Tuple[int, Dict[str, str]]:
        length = cls._data_length(data)
        hashes = {}

        if hash_algorithms is None:
            hash_algorithms = [sslib_hash.DEFAULT_HASH_ALGORITHM]

        for algorithm in hash_algorithms:
            try:
                if isinstance(data, bytes):
                    digest_object = sslib_hash.digest(algorithm)
                    digest_object.update(data)
                else:
                    digest_object = sslib_hash.digest_fileobject(
                        data, algorithm
                    )
            except (
                sslib_exceptions.UnsupportedAlgorithmError,
                sslib_exceptions.FormatError,
            ) as e:
                raise ValueError(f"Unsupported algorithm '{algorithm}'") from e

            hashes[algorithm] = digest_object.hexdigest()

        return (length, hashes)


class MetaFile(BaseFile):
    """Version, length and hashes of a lower tier metadata document.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        version: Version of the metadata file.
        length: Length of the canonical signed document in bytes.
        hashes: Dictionary of hash algorithm names to hashes of the canonical
            signed document.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    def __init__(
        self,
        version: int = 1,
        length: Optional[int] = None,
        hashes: Optional[Dict[str, str]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        if version <= 0:
            raise ValueError(f"Metafile version must be > 0, got {version}")
        if length is not None:
            self._validate_length(length)
        if hashes is not None:
            self._validate_hashes(hashes)

        self.version = version
        self.length = length
        self.hashes = hashes
        if unrecognized_fields is None:
            unrecognized_fields = {}

        self.unrecognized_fields = unrecognized_fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetaFile):
            return False

        return (
            self.version == other.version
            and self.length == other.length
            and self.hashes == other.hashes
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, meta_dict: Dict[str, Any]) -> "MetaFile":
        """Create ``MetaFile`` object from its json/dict representation.

        Raises:
            ValueError, KeyError: Invalid arguments.
        """
        version = meta_dict.pop("version")
        length = meta_dict.pop("length", None)
        hashes = meta_dict.pop("hashes", None)

        # All fields left in the meta_dict are unrecognized.
        return cls(version, length, hashes, meta_dict)

    @classmethod
    def from_data(
        cls,
        version: int,
        data: Union[bytes, IO[bytes]],
        hash_algorithms: List[str],
    ) -> "MetaFile":
        """Create a ``MetaFile`` describing ``data``.

        Raises:
            ValueError: The hash algorithms list contains an unsupported
                algorithm.
        """
        length, hashes = cls._get_length_and_hashes(data, hash_algorithms)
        return cls(version, length, hashes)

    def to_dict(self) -> Dict[str, Any]:
        res_dict: Dict[str, Any] = {
            "version": self.version,
            **self.unrecognized_fields,
        }

        if self.length is not None:
            res_dict["length"] = self.length

        if self.hashes is not None:
            res_dict["hashes"] = self.hashes

        return res_dict

    def verify_length_and_hashes(self, data: Union[bytes, IO[bytes]]) -> None:
        """Verify that the length and hashes of ``data`` match.

        Raises:
            LengthOrHashMismatchError: Calculated length or hashes do not
                match expected values or hash algorithm is not supported.
        """
        if self.length is not None:
            self._verify_length(data, self.length)

        if self.hashes is not None:
            self._verify_hashes(data, self.hashes)


class Timestamp(Signed):
    """The signed part of timestamp metadata.

    The document format keeps snapshot information in a ``meta`` dictionary;
    here it is the ``snapshot_meta`` ``MetaFile``.

    Args:
        version: Metadata version number. Default is 1.
        spec_version: Supported specification version. Default is the
            version currently supported by the library.
        expires: Metadata expiry date. Default is current date and time.
        snapshot_meta: Meta information for snapshot metadata. Default is a
            MetaFile with version 1.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError: Invalid arguments.
    """

    type = _TIMESTAMP

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        snapshot_meta: Optional[MetaFile] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.snapshot_meta = snapshot_meta or MetaFile(1)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timestamp):
            return False

        return (
            super().__eq__(other) and self.snapshot_meta == other.snapshot_meta
        )

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Timestamp":
        """Create ``Timestamp`` object from its json/dict representation.

        Raises:
            ValueError, KeyError: Invalid arguments.
        """
        common_args = cls._common_fields_from_dict(signed_dict)
        meta_dict = signed_dict.pop("meta")
        snapshot_meta = MetaFile.from_dict(meta_dict["snapshot.json"])
        # All fields left in the timestamp_dict are unrecognized.
        return cls(*common_args, snapshot_meta, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        res_dict = self._common_fields_to_dict()
        res_dict["meta"] = {"snapshot.json": self.snapshot_meta.to_dict()}
        return res_dict


class Snapshot(Signed):
    """The signed part of snapshot metadata.

    Args:
        version: Metadata version number. Default is 1.
        spec_version: Supported specification version. Default is the
            version currently supported by the library.
        expires: Metadata expiry date. Default is current date and time.
        meta: Dictionary of targets filenames to ``MetaFile`` objects. Default
            is a dictionary with a Metafile for "targets.json" version 1.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError: Invalid arguments.
    """

    type = _SNAPSHOT

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        meta: Optional[Dict[str, MetaFile]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.meta = meta if meta is not None else {"targets.json": MetaFile(1)}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return False

        return super().__eq__(other) and self.meta == other.meta

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Snapshot":
        """Create ``Snapshot`` object from its json/dict representation.

        Raises:
            ValueError, KeyError: Invalid arguments.
        """
        common_args = cls._common_fields_from_dict(signed_dict)
        meta_dicts = signed_dict.pop("meta")
        meta = {}
        for meta_path, meta_dict in meta_dicts.items():
            meta[meta_path] = MetaFile.from_dict(meta_dict)
        # All fields left in the snapshot_dict are unrecognized.
        return cls(*common_args, meta, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        snapshot_dict = self._common_fields_to_dict()
        snapshot_dict["meta"] = {
            path: meta_info.to_dict() for path, meta_info in self.meta.items()
        }
        return snapshot_dict


class DelegatedRole(Role):
    """A role trusted by targets to sign for a set of target path patterns.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        name: Delegated role name: letters, digits, ``-`` and ``_``, and not
            one of the top-level role names.
        keyids: Delegated role signing key identifiers.
        threshold: Number of keys required to sign this role's metadata.
        terminating: ``True`` if this delegation terminates a target lookup.
        paths: Glob patterns of the target paths that are delegated.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError: Invalid arguments.
    """

    def __init__(
        self,
        name: str,
        keyids: List[str],
        threshold: int,
        terminating: bool,
        paths: List[str],
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(keyids, threshold, unrecognized_fields)
        if not isinstance(name, str) or not _DELEGATION_NAME.match(name):
            raise ValueError(f"Invalid delegated role name {name!r}")
        if name in TOP_LEVEL_ROLE_NAMES:
            raise ValueError(f"Delegated role cannot be named {name}")
        if not paths or any(not isinstance(p, str) or not p for p in paths):
            raise ValueError("Paths must be a non empty list of strings")

        self.name = name
        self.terminating = terminating
        self.paths = paths

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DelegatedRole):
            return False

        return (
            super().__eq__(other)
            and self.name == other.name
            and self.terminating == other.terminating
            and self.paths == other.paths
        )

    @classmethod
    def from_dict(cls, role_dict: Dict[str, Any]) -> "DelegatedRole":
        """Create ``DelegatedRole`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        name = role_dict.pop("name")
        keyids = role_dict.pop("keyids")
        threshold = role_dict.pop("threshold")
        terminating = role_dict.pop("terminating")
        paths = role_dict.pop("paths")
        # All fields left in the role_dict are unrecognized.
        return cls(name, keyids, threshold, terminating, paths, role_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "terminating": self.terminating,
            **super().to_dict(),
            "paths": self.paths,
        }


class Delegations:
    """Keys and delegated roles of a targets document.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        keys: Dictionary of keyids to Keys. Defines the keys used in ``roles``.
        roles: Ordered dictionary of role names to DelegatedRoles. The order is
            the order in which delegations are consulted.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError: Invalid arguments.
    """

    def __init__(
        self,
        keys: Dict[str, Key],
        roles: Dict[str, DelegatedRole],
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        for name, role in roles.items():
            if name != role.name:
                raise ValueError(f"Role {role.name} stored as {name}")
        self.keys = keys
        self.roles = roles
        if unrecognized_fields is None:
            unrecognized_fields = {}

        self.unrecognized_fields = unrecognized_fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Delegations):
            return False

        return (
            self.keys == other.keys
            # Order of the delegated roles matters
            and list(self.roles.items()) == list(other.roles.items())
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, delegations_dict: Dict[str, Any]) -> "Delegations":
        """Create ``Delegations`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        keys = delegations_dict.pop("keys")
        keys_res = {}
        for keyid, key_dict in keys.items():
            keys_res[keyid] = Key.from_dict(keyid, key_dict)

        roles_res: Dict[str, DelegatedRole] = {}
        for role_dict in delegations_dict.pop("roles"):
            new_role = DelegatedRole.from_dict(role_dict)
            if new_role.name in roles_res:
                raise ValueError(f"Duplicate role {new_role.name}")
            roles_res[new_role.name] = new_role

        # All fields left in the delegations_dict are unrecognized.
        return cls(keys_res, roles_res, delegations_dict)

    def to_dict(self) -> Dict[str, Any]:
        keys = {keyid: key.to_dict() for keyid, key in self.keys.items()}
        return {
            "keys": keys,
            "roles": [role.to_dict() for role in self.roles.values()],
            **self.unrecognized_fields,
        }


class TargetFile(BaseFile):
    """Length, hashes and custom data of one target artifact.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        length: Length of the target file in bytes.
        hashes: Dictionary of hash algorithm names to hashes of the target
            file content.
        path: Target name, relative to the repository targets directory.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API. Registry specific data lives under ``custom``.

    Raises:
        ValueError, TypeError: Invalid arguments.
    """

    def __init__(
        self,
        length: int,
        hashes: Dict[str, str],
        path: str,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        self._validate_length(length)
        self._validate_hashes(hashes)

        self.length = length
        self.hashes = hashes
        self.path = path
        if unrecognized_fields is None:
            unrecognized_fields = {}

        self.unrecognized_fields = unrecognized_fields

    @property
    def custom(self) -> Optional[Dict[str, Any]]:
        """Registry specific data about the target, e.g. a media type."""
        return self.unrecognized_fields.get("custom")

    @custom.setter
    def custom(self, value: Optional[Dict[str, Any]]) -> None:
        if value is None:
            self.unrecognized_fields.pop("custom", None)
        else:
            self.unrecognized_fields["custom"] = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TargetFile):
            return False

        return (
            self.length == other.length
            and self.hashes == other.hashes
            and self.path == other.path
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @classmethod
    def from_dict(cls, target_dict: Dict[str, Any], path: str) -> "TargetFile":
        """Create ``TargetFile`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        length = target_dict.pop("length")
        hashes = target_dict.pop("hashes")

        # All fields left in the target_dict are unrecognized.
        return cls(length, hashes, path, target_dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "length": self.length,
            "hashes": self.hashes,
            **self.unrecognized_fields,
        }

    @classmethod
    def from_data(
        cls,
        target_file_path: str,
        data: Union[bytes, IO[bytes]],
        custom: Optional[Dict[str, Any]] = None,
    ) -> "TargetFile":
        """Create ``TargetFile`` with the length and sha256 of ``data``."""
        length, hashes = cls._get_length_and_hashes(data, ["sha256"])
        target = cls(length, hashes, target_file_path)
        target.custom = custom
        return target

    def verify_length_and_hashes(self, data: Union[bytes, IO[bytes]]) -> None:
        """Verify that length and hashes of ``data`` match expected values.

        Raises:
            LengthOrHashMismatchError: Calculated length or hashes do not
                match expected values or hash algorithm is not supported.
        """
        self._verify_length(data, self.length)
        self._verify_hashes(data, self.hashes)


class Targets(Signed, _DelegatorMixin):
    """The signed part of targets metadata.

    Targets lists the trusted target artifacts and delegates responsibility
    for target path patterns to other roles.

    Args:
        version: Metadata version number. Default is 1.
        spec_version: Supported specification version. Default is the
            version currently supported by the library.
        expires: Metadata expiry date. Default is current date and time.
        targets: Dictionary of target names to TargetFiles. Default is an
            empty dictionary.
        delegations: Delegated roles and their keys. Default is None.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API.

    Raises:
        ValueError: Invalid arguments.
    """

    type = _TARGETS

    def __init__(
        self,
        version: Optional[int] = None,
        spec_version: Optional[str] = None,
        expires: Optional[datetime] = None,
        targets: Optional[Dict[str, TargetFile]] = None,
        delegations: Optional[Delegations] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(version, spec_version, expires, unrecognized_fields)
        self.targets = targets if targets is not None else {}
        self.delegations = delegations

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Targets):
            return False

        return (
            super().__eq__(other)
            and self.targets == other.targets
            and self.delegations == other.delegations
        )

    @classmethod
    def from_dict(cls, signed_dict: Dict[str, Any]) -> "Targets":
        """Create ``Targets`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.
        """
        common_args = cls._common_fields_from_dict(signed_dict)
        targets = signed_dict.pop(_TARGETS)
        try:
            delegations_dict = signed_dict.pop("delegations")
        except KeyError:
            delegations = None
        else:
            delegations = Delegations.from_dict(delegations_dict)

        res_targets = {}
        for target_path, target_info in targets.items():
            res_targets[target_path] = TargetFile.from_dict(
                target_info, target_path
            )
        # All fields left in the targets_dict are unrecognized.
        return cls(*common_args, res_targets, delegations, signed_dict)

    def to_dict(self) -> Dict[str, Any]:
        targets_dict = self._common_fields_to_dict()
        targets_dict[_TARGETS] = {
            path: target.to_dict() for path, target in self.targets.items()
        }
        if self.delegations is not None:
            targets_dict["delegations"] = self.delegations.to_dict()
        return targets_dict

    def add_delegated_role(self, role: DelegatedRole) -> None:
        """Append ``role`` to the delegations.

        Raises:
            ValueError: A role with the same name is already delegated.
        """
        if self.delegations is None:
            self.delegations = Delegations({}, {})
        if role.name in self.delegations.roles:
            raise ValueError(f"Delegated role {role.name} already exists")
        self.delegations.roles[role.name] = role

    def remove_delegated_role(self, name: str) -> DelegatedRole:
        """Remove the delegated role ``name`` and the keys only it used.

        Raises:
            ValueError: ``name`` is not delegated.
        """
        role = self.get_delegated_role(name)
        for keyid in list(role.keyids):
            self.revoke_key(keyid, name)
        del self.delegations.roles[name]
        if not self.delegations.roles:
            self.delegations = None
        return role

    def add_key(self, key: Key, role: str) -> None:
        """Authorize ``key`` for delegated role ``role``.

        Raises:
            ValueError: ``role`` is not delegated by this Targets.
        """
        delegated = self.get_delegated_role(role)
        if key.keyid not in delegated.keyids:
            delegated.keyids.append(key.keyid)
        self.delegations.keys[key.keyid] = key

    def revoke_key(self, keyid: str, role: str) -> None:
        """Remove ``keyid`` from delegated role ``role``.

        The key is dropped from ``delegations.keys`` once no role uses it.

        Raises:
            ValueError: ``role`` is not delegated or doesn't use the key.
        """
        delegated = self.get_delegated_role(role)
        if keyid not in delegated.keyids:
            raise ValueError(f"Key with id {keyid} is not used by {role}")
        delegated.keyids.remove(keyid)
        for other in self.delegations.roles.values():
            if keyid in other.keyids:
                return

        del self.delegations.keys[keyid]

    def get_delegated_role(self, delegated_role: str) -> DelegatedRole:
        if self.delegations is None:
            raise ValueError("No delegations found")
        if delegated_role not in self.delegations.roles:
            raise ValueError(f"Delegated role {delegated_role} not found")

        return self.delegations.roles[delegated_role]

    def get_key(self, keyid: str) -> Key:
        if self.delegations is None:
            raise ValueError("No delegations found")
        if keyid not in self.delegations.keys:
            raise ValueError(f"Key {keyid} not found")

        return self.delegations.keys[keyid]
