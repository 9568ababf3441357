# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""The signed document container of the registry trust metadata.

A ``Metadata`` object represents a single signed metadata file: the
``signed`` attribute is one of the four top level payload classes
(``Root``, ``Timestamp``, ``Snapshot`` and ``Targets``) and ``signatures``
holds the signatures over the canonical JSON form of that payload.
``Metadata`` can be type constrained, e.g. ``Metadata[Root]``, so that static
type checkers know the type of ``signed``.

New documents are created from scratch with::

    one_day = datetime.now(timezone.utc) + timedelta(days=1)
    timestamp = Metadata(Timestamp(expires=one_day))
"""

import logging
from typing import Any, Dict, Generic, Optional, Type, cast

from securesystemslib.signer import Signature

# Expose payload classes via ``regtuf.api.metadata`` as well
from regtuf.api._payload import (  # noqa: F401
    _ROOT,
    _SNAPSHOT,
    _TARGETS,
    _TIMESTAMP,
    EXPIRES_FORMAT,
    SPECIFICATION_VERSION,
    TOP_LEVEL_ROLE_NAMES,
    BaseFile,
    DelegatedRole,
    Delegations,
    Key,
    MetaFile,
    Role,
    Root,
    RootVerificationResult,
    Signed,
    Snapshot,
    T,
    TargetFile,
    Targets,
    Timestamp,
    VerificationResult,
)
from regtuf.api.serialization import (
    MetadataDeserializer,
    MetadataSerializer,
)

logger = logging.getLogger(__name__)


class Metadata(Generic[T]):
    """A signed metadata document.

    *All parameters named below are not just constructor arguments but also
    instance attributes.*

    Args:
        signed: Actual metadata payload, i.e. one of ``Targets``,
            ``Snapshot``, ``Timestamp`` or ``Root``.
        signatures: Ordered dictionary of keyids to ``Signature`` objects, each
            signing the canonical serialized representation of ``signed``.
            Default is an empty dictionary.
        unrecognized_fields: Dictionary of all attributes that are not managed
            by this API. These fields are NOT signed.
    """

    def __init__(
        self,
        signed: T,
        signatures: Optional[Dict[str, Signature]] = None,
        unrecognized_fields: Optional[Dict[str, Any]] = None,
    ):
        self.signed: T = signed
        self.signatures = signatures if signatures is not None else {}
        if unrecognized_fields is None:
            unrecognized_fields = {}

        self.unrecognized_fields = unrecognized_fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Metadata):
            return False

        return (
            # Order of the signatures matters
            list(self.signatures.items()) == list(other.signatures.items())
            and self.signed == other.signed
            and self.unrecognized_fields == other.unrecognized_fields
        )

    @property
    def signed_bytes(self) -> bytes:
        """Canonical JSON bytes of ``self.signed``: the signed payload."""

        # Use local scope import to avoid circular import errors
        from regtuf.api.serialization.json import CanonicalJSONSerializer

        return CanonicalJSONSerializer().serialize(self.signed)

    @classmethod
    def from_dict(cls, metadata: Dict[str, Any]) -> "Metadata[T]":
        """Create ``Metadata`` object from its json/dict representation.

        Raises:
            ValueError, KeyError, TypeError: Invalid arguments.

        Side Effect:
            Destroys the metadata dict passed by reference.
        """

        # Dispatch to contained metadata class on metadata _type field.
        _type = metadata["signed"]["_type"]

        if _type == _TARGETS:
            inner_cls: Type[Signed] = Targets
        elif _type == _SNAPSHOT:
            inner_cls = Snapshot
        elif _type == _TIMESTAMP:
            inner_cls = Timestamp
        elif _type == _ROOT:
            inner_cls = Root
        else:
            raise ValueError(f'unrecognized metadata type "{_type}"')

        signatures: Dict[str, Signature] = {}
        for sig_dict in metadata.pop("signatures"):
            sig = Signature.from_dict(sig_dict)
            if sig.keyid in signatures:
                raise ValueError(
                    f"Multiple signatures found for keyid {sig.keyid}"
                )
            signatures[sig.keyid] = sig

        return cls(
            # Specific type T is not known at static type check time: use cast
            signed=cast(T, inner_cls.from_dict(metadata.pop("signed"))),
            signatures=signatures,
            # All fields left in the metadata dict are unrecognized.
            unrecognized_fields=metadata,
        )

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        deserializer: Optional[MetadataDeserializer] = None,
    ) -> "Metadata[T]":
        """Load metadata from raw data.

        Raises:
            regtuf.api.serialization.DeserializationError:
                The data cannot be deserialized.
        """

        if deserializer is None:
            # Use local scope import to avoid circular import errors
            from regtuf.api.serialization.json import JSONDeserializer

            deserializer = JSONDeserializer()

        return deserializer.deserialize(data)

    def to_bytes(
        self, serializer: Optional[MetadataSerializer] = None
    ) -> bytes:
        """Return the document as bytes, indented JSON by default.

        Raises:
            regtuf.api.serialization.SerializationError:
                The metadata object cannot be serialized.
        """

        if serializer is None:
            # Use local scope import to avoid circular import errors
            from regtuf.api.serialization.json import JSONSerializer

            serializer = JSONSerializer()

        return serializer.serialize(self)

    def to_dict(self) -> Dict[str, Any]:
        signatures = [sig.to_dict() for sig in self.signatures.values()]

        return {
            "signatures": signatures,
            "signed": self.signed.to_dict(),
            **self.unrecognized_fields,
        }
