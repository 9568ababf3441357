# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Signing and signature verification with role keys.

Signatures are ECDSA over SHA-256 of the canonical signed bytes, encoded as
the fixed-width big-endian ``r`` followed by ``s`` (32 bytes each for P-256)
and hex encoded.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Mapping

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from securesystemslib.exceptions import UnverifiedSignatureError
from securesystemslib.signer import Key, Signature

from regtuf.exceptions import SigningError
from regtuf.keys import KEY_SCHEME, KEY_TYPE, RoleKey

if TYPE_CHECKING:
    from regtuf.api.metadata import Metadata

logger = logging.getLogger(__name__)


def _coordinate_size(curve: ec.EllipticCurve) -> int:
    return (curve.key_size + 7) // 8


def create_signature(key: RoleKey, payload: bytes) -> Signature:
    """Sign ``payload`` with the private part of ``key``.

    Raises:
        ValueError: ``key`` has no private key.
    """
    if key.private_key is None:
        raise ValueError(f"Key {key.keyid[:7]} has no private key")

    der_signature = key.private_key.sign(payload, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der_signature)
    size = _coordinate_size(key.private_key.curve)
    raw = r.to_bytes(size, "big") + s.to_bytes(size, "big")
    return Signature(key.keyid, raw.hex())


def verify_signature(key: Key, signature: Signature, payload: bytes) -> None:
    """Verify a raw ``r||s`` ECDSA ``signature`` over ``payload``.

    Raises:
        UnverifiedSignatureError: The signature is malformed, made with an
            unsupported key or does not verify.
    """
    if (key.keytype, key.scheme) != (KEY_TYPE, KEY_SCHEME):
        raise UnverifiedSignatureError(
            f"Unsupported key {key.keytype}/{key.scheme}"
        )

    try:
        public_key = serialization.load_pem_public_key(
            key.keyval["public"].encode("utf-8")
        )
        raw = bytes.fromhex(signature.signature)
    except (KeyError, ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise UnverifiedSignatureError(
            f"Cannot verify signature by {key.keyid[:7]}"
        ) from e

    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise UnverifiedSignatureError(f"{key.keyid[:7]} is not an EC key")

    size = _coordinate_size(public_key.curve)
    if len(raw) != 2 * size:
        raise UnverifiedSignatureError(
            f"Expected {2 * size} signature bytes, got {len(raw)}"
        )

    r = int.from_bytes(raw[:size], "big")
    s = int.from_bytes(raw[size:], "big")
    try:
        public_key.verify(
            encode_dss_signature(r, s), payload, ec.ECDSA(hashes.SHA256())
        )
    except InvalidSignature as e:
        raise UnverifiedSignatureError(
            f"Signature by {key.keyid[:7]} does not verify"
        ) from e


@dataclass
class SigningResult:
    """Signatures made for one role, and the keys that failed to sign.

    Attributes:
        signatures: dict of keyid to Signature, in signing order.
        failures: dict of keyid to the SigningError of that key.
    """

    signatures: Dict[str, Signature] = field(default_factory=dict)
    failures: Dict[str, SigningError] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.signatures)


class RoleSigner:
    """Signs payloads with every available key tagged with a role.

    Args:
        keyring: dict of keyid to RoleKey. The signer keeps a reference, so
            keys added to or removed from the keyring later are seen.
    """

    def __init__(self, keyring: Mapping[str, RoleKey]):
        self._keyring = keyring

    def keys_for(self, role: str) -> List[RoleKey]:
        """Keys that sign for ``role``: active keys first, then retired."""
        keys = [
            key
            for key in self._keyring.values()
            if role in key.roles and key.private_key is not None
        ]
        return sorted(keys, key=lambda k: (k.is_retired, k.keyid))

    def sign(self, role: str, payload: bytes) -> SigningResult:
        result = SigningResult()
        for key in self.keys_for(role):
            try:
                signature = create_signature(key, payload)
            except Exception as e:  # noqa: BLE001
                error = SigningError(f"Failed to sign {role}: {e}", key.keyid)
                error.__cause__ = e
                result.failures[key.keyid] = error
                logger.warning("Key %s failed to sign %s", key.keyid[:7], role)
                continue

            result.signatures[key.keyid] = signature

        return result

    def sign_metadata(self, role: str, metadata: "Metadata") -> SigningResult:
        """Replace the signatures of ``metadata`` with fresh ones."""
        result = self.sign(role, metadata.signed_bytes)
        metadata.signatures.clear()
        metadata.signatures.update(result.signatures)
        return result
