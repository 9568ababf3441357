# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Abstract de/serializers of metadata documents.

- Metadata de/serializers convert documents to and from their on-disk form.
- Signed serializers canonicalize payloads for signing and for the length
  and hashes recorded by the tier above.
"""

import abc
from typing import TYPE_CHECKING

from regtuf.exceptions import PersistenceError

if TYPE_CHECKING:
    from regtuf.api.metadata import Metadata, Signed


class SerializationError(PersistenceError):
    """Error during serialization."""


class DeserializationError(PersistenceError):
    """Error during deserialization."""


class MetadataDeserializer(metaclass=abc.ABCMeta):
    """Abstract base class for deserialization of Metadata objects."""

    @abc.abstractmethod
    def deserialize(self, raw_data: bytes) -> "Metadata":
        """Deserialize bytes to Metadata object."""
        raise NotImplementedError


class MetadataSerializer(metaclass=abc.ABCMeta):
    """Abstract base class for serialization of Metadata objects."""

    @abc.abstractmethod
    def serialize(self, metadata_obj: "Metadata") -> bytes:
        """Serialize Metadata object to bytes."""
        raise NotImplementedError


class SignedSerializer(metaclass=abc.ABCMeta):
    """Abstract base class for serialization of Signed objects."""

    @abc.abstractmethod
    def serialize(self, signed_obj: "Signed") -> bytes:
        """Serialize Signed object to bytes."""
        raise NotImplementedError
