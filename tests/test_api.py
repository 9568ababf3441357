# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0
"""Unit tests for api/metadata.py"""

import io
import json
import logging
import sys
import unittest
from copy import deepcopy
from datetime import datetime, timedelta, timezone

from cryptography.hazmat.primitives.asymmetric import ec
from securesystemslib import hash as sslib_hash

from regtuf.api.metadata import (
    SPECIFICATION_VERSION,
    TOP_LEVEL_ROLE_NAMES,
    DelegatedRole,
    Metadata,
    MetaFile,
    Root,
    Snapshot,
    TargetFile,
    Targets,
    Timestamp,
)
from regtuf.api.serialization import DeserializationError
from regtuf.api.serialization.json import JSONSerializer
from regtuf.exceptions import LengthOrHashMismatchError, UnsignedMetadataError
from regtuf.keys import RoleKey
from regtuf.signer import create_signature
from tests import utils

logger = logging.getLogger(__name__)


def _new_key(role: str) -> RoleKey:
    private_key = ec.generate_private_key(ec.SECP256R1())
    return RoleKey.from_private_key(private_key, role)


class TestMetadata(unittest.TestCase):
    """Tests for the public API of 'regtuf/api/metadata.py'."""

    def setUp(self) -> None:
        self.expires = datetime(2031, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
        self.keys = {role: _new_key(role) for role in TOP_LEVEL_ROLE_NAMES}
        root = Root(expires=self.expires)
        for role, key in self.keys.items():
            root.add_key(key.public_key, role)
        self.root_md = Metadata(root)
        self._sign(self.root_md, "root")

    def _sign(self, md: Metadata, role: str) -> None:
        sig = create_signature(self.keys[role], md.signed_bytes)
        md.signatures[sig.keyid] = sig

    def test_to_from_bytes(self) -> None:
        targets = Targets(expires=self.expires)
        targets.targets["a/b"] = TargetFile.from_data("a/b", b"data")
        for signed in [self.root_md.signed, targets, Snapshot(), Timestamp()]:
            md = Metadata(signed)
            data = md.to_bytes()
            md2 = Metadata.from_bytes(data)
            self.assertEqual(md, md2)
            self.assertIsInstance(md2.signed, type(signed))
            self.assertEqual(data, md2.to_bytes())

    def test_document_is_indented_json(self) -> None:
        data = self.root_md.to_bytes()
        self.assertIn(b'\n  "signatures": [', data)
        compact = self.root_md.to_bytes(JSONSerializer(indent=None))
        self.assertNotIn(b"\n", compact)
        self.assertEqual(json.loads(data), json.loads(compact))

    def test_serialize_with_validate(self) -> None:
        serializer = JSONSerializer(validate=True)
        self.root_md.to_bytes(serializer)

    def test_expires_format(self) -> None:
        data = json.loads(self.root_md.to_bytes())
        self.assertEqual(data["signed"]["expires"], "2031-05-06T07:08:09Z")

    def test_expires_parsed_as_iso8601(self) -> None:
        md_dict = json.loads(self.root_md.to_bytes())
        md_dict["signed"]["expires"] = "2031-05-06T09:08:09+02:00"
        md = Metadata.from_dict(md_dict)
        self.assertEqual(md.signed.expires, self.expires)
        self.assertEqual(md.signed.expires.tzinfo, timezone.utc)

    def test_naive_expires_is_utc(self) -> None:
        timestamp = Timestamp(expires=datetime(2031, 1, 1, 0, 0, 0, 500))
        self.assertEqual(
            timestamp.expires, datetime(2031, 1, 1, tzinfo=timezone.utc)
        )

    def test_invalid_documents(self) -> None:
        for data in [
            b"not json",
            b"{}",
            b'{"signed": {"_type": "mirrors"}, "signatures": []}',
        ]:
            with self.assertRaises(DeserializationError):
                Metadata.from_bytes(data)

        md_dict = json.loads(self.root_md.to_bytes())
        md_dict["signed"]["expires"] = "next tuesday"
        with self.assertRaises(DeserializationError):
            Metadata.from_bytes(json.dumps(md_dict).encode())

    def test_duplicate_signatures_rejected(self) -> None:
        md_dict = json.loads(self.root_md.to_bytes())
        md_dict["signatures"].append(deepcopy(md_dict["signatures"][0]))
        with self.assertRaises(ValueError):
            Metadata.from_dict(md_dict)

    def test_spec_version(self) -> None:
        self.assertEqual(
            Root().spec_version, ".".join(SPECIFICATION_VERSION)
        )
        Root(spec_version="1.0")
        for spec_version in ["2.0.0", "1", "1.a.0", "1.0.0.0"]:
            with self.assertRaises(ValueError):
                Root(spec_version=spec_version)

    def test_version_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            Targets(version=0)
        with self.assertRaises(ValueError):
            MetaFile(version=0)

    def test_is_expired(self) -> None:
        timestamp = Timestamp(expires=self.expires)
        self.assertFalse(timestamp.is_expired(self.expires))
        self.assertTrue(
            timestamp.is_expired(self.expires + timedelta(seconds=1))
        )
        self.assertFalse(
            timestamp.is_expired(self.expires - timedelta(days=1))
        )

    def test_root_add_and_revoke_key(self) -> None:
        root = self.root_md.signed
        self.assertEqual(len(root.keys), 4)

        extra = _new_key("snapshot")
        root.add_key(extra.public_key, "snapshot")
        root.add_key(extra.public_key, "timestamp")
        # adding twice is a no-op
        root.add_key(extra.public_key, "snapshot")
        self.assertEqual(len(root.roles["snapshot"].keyids), 2)

        root.revoke_key(extra.keyid, "snapshot")
        # still used by timestamp
        self.assertIn(extra.keyid, root.keys)
        root.revoke_key(extra.keyid, "timestamp")
        self.assertNotIn(extra.keyid, root.keys)

        with self.assertRaises(ValueError):
            root.revoke_key(extra.keyid, "timestamp")
        with self.assertRaises(ValueError):
            root.add_key(extra.public_key, "mirrors")

    def test_root_roles_must_be_top_level(self) -> None:
        roles = deepcopy(self.root_md.signed.roles)
        del roles["timestamp"]
        with self.assertRaises(ValueError):
            Root(roles=roles)

    def test_verify_delegate(self) -> None:
        root = self.root_md.signed
        root.verify_delegate(
            "root", self.root_md.signed_bytes, self.root_md.signatures
        )

        snapshot_md = Metadata(Snapshot(expires=self.expires))
        self._sign(snapshot_md, "snapshot")
        root.verify_delegate(
            "snapshot", snapshot_md.signed_bytes, snapshot_md.signatures
        )

        # signed by the wrong key
        with self.assertRaises(UnsignedMetadataError):
            root.verify_delegate(
                "timestamp", snapshot_md.signed_bytes, snapshot_md.signatures
            )

        # payload changed after signing
        snapshot_md.signed.version += 1
        with self.assertRaises(UnsignedMetadataError):
            root.verify_delegate(
                "snapshot", snapshot_md.signed_bytes, snapshot_md.signatures
            )

        with self.assertRaises(ValueError):
            root.verify_delegate("mirrors", b"", {})

    def test_verification_result_threshold(self) -> None:
        root = self.root_md.signed
        second = _new_key("targets")
        root.add_key(second.public_key, "targets")
        root.roles["targets"].threshold = 2

        md = Metadata(Targets(expires=self.expires))
        self._sign(md, "targets")
        result = root.get_verification_result(
            "targets", md.signed_bytes, md.signatures
        )
        self.assertFalse(result)
        self.assertEqual(set(result.signed), {self.keys["targets"].keyid})
        self.assertEqual(set(result.unsigned), {second.keyid})

        sig = create_signature(second, md.signed_bytes)
        md.signatures[sig.keyid] = sig
        result = root.get_verification_result(
            "targets", md.signed_bytes, md.signatures
        )
        self.assertTrue(result)
        self.assertEqual(len(result.signed), 2)

    def test_root_verification_result(self) -> None:
        old_root = self.root_md.signed
        new_root = deepcopy(old_root)
        new_root.version += 1
        new_key = _new_key("root")
        new_root.revoke_key(self.keys["root"].keyid, "root")
        new_root.add_key(new_key.public_key, "root")

        md = Metadata(new_root)
        sig = create_signature(new_key, md.signed_bytes)
        md.signatures[sig.keyid] = sig
        result = new_root.get_root_verification_result(
            old_root, md.signed_bytes, md.signatures
        )
        # only the new root is satisfied
        self.assertFalse(result)
        self.assertTrue(result.second)
        self.assertFalse(result.first)

        self._sign(md, "root")
        result = new_root.get_root_verification_result(
            old_root, md.signed_bytes, md.signatures
        )
        self.assertTrue(result)

        new_root.version += 1
        with self.assertRaises(ValueError):
            new_root.get_root_verification_result(
                old_root, md.signed_bytes, md.signatures
            )

    def test_metafile_from_data(self) -> None:
        data = b"snapshot payload"
        meta = MetaFile.from_data(3, data, ["sha256"])
        digest = sslib_hash.digest("sha256")
        digest.update(data)
        self.assertEqual(meta.to_dict(), {
            "version": 3,
            "length": len(data),
            "hashes": {"sha256": digest.hexdigest()},
        })
        meta.verify_length_and_hashes(data)
        with self.assertRaises(LengthOrHashMismatchError):
            meta.verify_length_and_hashes(b"other payload..")

    def test_target_file(self) -> None:
        target = TargetFile.from_data(
            "app/image.tar", b"hello", {"media_type": "application/x-tar"}
        )
        self.assertEqual(target.length, 5)
        self.assertEqual(
            target.hashes["sha256"],
            "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824",
        )
        self.assertEqual(target.custom, {"media_type": "application/x-tar"})
        self.assertEqual(
            target.to_dict()["custom"], {"media_type": "application/x-tar"}
        )

        target.verify_length_and_hashes(b"hello")
        target.verify_length_and_hashes(io.BytesIO(b"hello"))
        with self.assertRaises(LengthOrHashMismatchError):
            target.verify_length_and_hashes(b"world")
        with self.assertRaises(LengthOrHashMismatchError):
            target.verify_length_and_hashes(b"hello!")

        target.custom = None
        self.assertNotIn("custom", target.to_dict())

    def test_target_file_from_file_object(self) -> None:
        from_bytes = TargetFile.from_data("a", b"content")
        from_file = TargetFile.from_data("a", io.BytesIO(b"content"))
        self.assertEqual(from_bytes, from_file)

    invalid_target_files: utils.DataSet = {
        "negative length": (-1, {"sha256": "ab"}),
        "no hashes": (1, {}),
        "non-string hash": (1, {"sha256": 1}),
    }

    @utils.run_sub_tests_with_dataset(invalid_target_files)
    def test_invalid_target_file(self, test_case_data: tuple) -> None:
        length, hashes = test_case_data
        with self.assertRaises((ValueError, TypeError)):
            TargetFile(length, hashes, "path")

    invalid_delegated_roles: utils.DataSet = {
        "empty name": ("", ["a/*"]),
        "path separator": ("team/a", ["a/*"]),
        "dot dot": ("..", ["a/*"]),
        "leading dash": ("-team", ["a/*"]),
        "top-level name": ("snapshot", ["a/*"]),
        "no paths": ("team-a", []),
        "empty path": ("team-a", [""]),
    }

    @utils.run_sub_tests_with_dataset(invalid_delegated_roles)
    def test_invalid_delegated_role(self, test_case_data: tuple) -> None:
        name, paths = test_case_data
        with self.assertRaises(ValueError):
            DelegatedRole(name, [], 1, False, paths)

    def test_delegations(self) -> None:
        targets = Targets(expires=self.expires)
        key = _new_key("team-a")
        targets.add_delegated_role(
            DelegatedRole("team-a", [], 1, True, ["team-a/*"])
        )
        targets.add_key(key.public_key, "team-a")
        with self.assertRaises(ValueError):
            targets.add_delegated_role(
                DelegatedRole("team-a", [], 1, False, ["other/*"])
            )

        md = Metadata(targets)
        md2 = Metadata.from_bytes(md.to_bytes())
        role = md2.signed.get_delegated_role("team-a")
        self.assertEqual(role.paths, ["team-a/*"])
        self.assertTrue(role.terminating)
        self.assertEqual(role.keyids, [key.keyid])
        self.assertEqual(md2.signed.get_key(key.keyid), key.public_key)

        removed = targets.remove_delegated_role("team-a")
        self.assertEqual(removed.name, "team-a")
        self.assertIsNone(targets.delegations)
        with self.assertRaises(ValueError):
            targets.get_delegated_role("team-a")
        with self.assertRaises(ValueError):
            targets.remove_delegated_role("team-a")

    def test_unrecognized_fields_survive(self) -> None:
        md_dict = json.loads(self.root_md.to_bytes())
        md_dict["signed"]["foo"] = "bar"
        md_dict["signed"]["roles"]["root"]["extra"] = [1]
        md = Metadata.from_dict(deepcopy(md_dict))
        self.assertEqual(md.signed.unrecognized_fields, {"foo": "bar"})
        self.assertEqual(json.loads(md.to_bytes()), md_dict)


# Run unit test.
if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
