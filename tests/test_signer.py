# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Unit tests for 'regtuf/signer.py'."""

import logging
import sys
import unittest
from datetime import datetime, timezone
from typing import Dict
from unittest import mock

from cryptography.hazmat.primitives.asymmetric import ec
from securesystemslib.exceptions import UnverifiedSignatureError
from securesystemslib.signer import Signature, SSlibKey

from regtuf.api.metadata import Metadata, Targets
from regtuf.exceptions import SigningError
from regtuf.keys import RoleKey
from regtuf.signer import RoleSigner, create_signature, verify_signature
from tests import utils

logger = logging.getLogger(__name__)


def _new_key(role: str) -> RoleKey:
    private_key = ec.generate_private_key(ec.SECP256R1())
    return RoleKey.from_private_key(private_key, role)


class TestSignatures(unittest.TestCase):
    def setUp(self) -> None:
        self.key = _new_key("targets")
        self.payload = b'{"_type":"targets"}'

    def test_raw_signature_format(self) -> None:
        sig = create_signature(self.key, self.payload)
        self.assertEqual(sig.keyid, self.key.keyid)
        # fixed width r||s, hex encoded
        self.assertEqual(len(sig.signature), 128)
        bytes.fromhex(sig.signature)

    def test_sign_verify(self) -> None:
        sig = create_signature(self.key, self.payload)
        verify_signature(self.key.public_key, sig, self.payload)

        with self.assertRaises(UnverifiedSignatureError):
            verify_signature(self.key.public_key, sig, self.payload + b" ")

        other = _new_key("targets")
        with self.assertRaises(UnverifiedSignatureError):
            verify_signature(other.public_key, sig, self.payload)

    def test_verify_failures(self) -> None:
        sig = create_signature(self.key, self.payload)
        public = self.key.public_key

        bad_signatures = {
            "not hex": Signature(sig.keyid, "zz" * 64),
            "too short": Signature(sig.keyid, sig.signature[:-2]),
            "der encoded": Signature(sig.keyid, "30440220" + "00" * 64),
            "zeroed": Signature(sig.keyid, "00" * 64),
        }
        for case, bad in bad_signatures.items():
            with self.subTest(case=case):
                with self.assertRaises(UnverifiedSignatureError):
                    verify_signature(public, bad, self.payload)

        bad_keys = {
            "unsupported scheme": SSlibKey(
                public.keyid, "ecdsa", "ecdsa-sha2-nistp384", public.keyval
            ),
            "bad pem": SSlibKey(
                public.keyid, "ecdsa", "ecdsa-sha2-nistp256", {"public": "x"}
            ),
        }
        for case, bad_key in bad_keys.items():
            with self.subTest(case=case):
                with self.assertRaises(UnverifiedSignatureError):
                    verify_signature(bad_key, sig, self.payload)

    def test_sign_without_private_key(self) -> None:
        public_only = RoleKey(self.key.keyid, ["targets"], self.key.public_pem)
        with self.assertRaises(ValueError):
            create_signature(public_only, self.payload)


class TestRoleSigner(unittest.TestCase):
    def setUp(self) -> None:
        self.keyring: Dict[str, RoleKey] = {}
        for role in ["root", "targets", "targets"]:
            key = _new_key(role)
            self.keyring[key.keyid] = key
        self.signer = RoleSigner(self.keyring)

    def test_keys_for(self) -> None:
        self.assertEqual(len(self.signer.keys_for("targets")), 2)
        self.assertEqual(len(self.signer.keys_for("root")), 1)
        self.assertEqual(self.signer.keys_for("snapshot"), [])

        # keyring changes are seen by the signer
        key = _new_key("snapshot")
        self.keyring[key.keyid] = key
        self.assertEqual(self.signer.keys_for("snapshot"), [key])

    def test_retired_keys_sign_last(self) -> None:
        retired = _new_key("targets")
        retired.retired_until = datetime(2030, 1, 1, tzinfo=timezone.utc)
        self.keyring[retired.keyid] = retired

        keys = self.signer.keys_for("targets")
        self.assertEqual(len(keys), 3)
        self.assertIs(keys[-1], retired)

    def test_sign_metadata(self) -> None:
        md = Metadata(Targets())
        md.signatures["stale"] = Signature("stale", "00")
        result = self.signer.sign_metadata("targets", md)

        self.assertTrue(result)
        self.assertEqual(result.failures, {})
        self.assertNotIn("stale", md.signatures)
        self.assertEqual(len(md.signatures), 2)
        for keyid, sig in md.signatures.items():
            verify_signature(
                self.keyring[keyid].public_key, sig, md.signed_bytes
            )

    def test_failing_key_is_collected(self) -> None:
        broken, working = self.signer.keys_for("targets")
        failing_key = mock.Mock(spec=ec.EllipticCurvePrivateKey)
        failing_key.sign.side_effect = RuntimeError("hsm down")
        broken.private_key = failing_key

        result = self.signer.sign("targets", b"payload")
        self.assertTrue(result)
        self.assertEqual(list(result.signatures), [working.keyid])
        self.assertIsInstance(result.failures[broken.keyid], SigningError)
        self.assertEqual(result.failures[broken.keyid].keyid, broken.keyid)
        self.assertIsInstance(
            result.failures[broken.keyid].__cause__, RuntimeError
        )

    def test_no_keys(self) -> None:
        result = self.signer.sign("snapshot", b"payload")
        self.assertFalse(result)
        self.assertEqual(result.signatures, {})


# Run unit test.
if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
