# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""JSON de/serializers of metadata documents.

Documents are stored as indented JSON; payloads are signed and hashed in
their OLPC Canonical JSON form.
"""

import json
from typing import Optional

from securesystemslib.formats import encode_canonical

from regtuf.api.metadata import Metadata, Signed
from regtuf.api.serialization import (
    DeserializationError,
    MetadataDeserializer,
    MetadataSerializer,
    SerializationError,
    SignedSerializer,
)


class JSONDeserializer(MetadataDeserializer):
    """Provides JSON to Metadata deserialize method."""

    def deserialize(self, raw_data: bytes) -> Metadata:
        try:
            json_dict = json.loads(raw_data.decode("utf-8"))
            metadata_obj = Metadata.from_dict(json_dict)

        except Exception as e:
            raise DeserializationError("Failed to deserialize JSON") from e

        return metadata_obj


class JSONSerializer(MetadataSerializer):
    """Provides Metadata to JSON serialize method.

    Args:
        indent: Indentation of the JSON output. None gives compact output.
        validate: Check that the document deserializes again without change
            of contents.
    """

    def __init__(self, indent: Optional[int] = 2, validate: bool = False):
        self.indent = indent
        self.validate = validate

    def serialize(self, metadata_obj: Metadata) -> bytes:
        try:
            separators = (",", ":") if self.indent is None else (",", ": ")
            json_bytes = json.dumps(
                metadata_obj.to_dict(),
                indent=self.indent,
                separators=separators,
                sort_keys=True,
            ).encode("utf-8")

            if self.validate:
                try:
                    new_md_obj = JSONDeserializer().deserialize(json_bytes)
                    if metadata_obj != new_md_obj:
                        raise ValueError(
                            "Metadata changes if you serialize and deserialize."
                        )
                except Exception as e:
                    raise ValueError("Metadata cannot be validated!") from e

        except Exception as e:
            raise SerializationError("Failed to serialize JSON") from e

        return json_bytes


class CanonicalJSONSerializer(SignedSerializer):
    """Provides Signed to OLPC Canonical JSON serialize method."""

    def serialize(self, signed_obj: Signed) -> bytes:
        try:
            signed_dict = signed_obj.to_dict()
            canonical_bytes = encode_canonical(signed_dict).encode("utf-8")

        except Exception as e:
            raise SerializationError("Failed to canonicalize") from e

        return canonical_bytes
