"""Tests for the key_store module."""

import os
import stat
import unittest
from pathlib import Path

from splurge_envelope.config import EnvelopeConfig
from splurge_envelope.exceptions import (
    KeyAlreadyExistsError,
    KeyNotFoundError,
    KeyUnreadableError,
    ValidationError,
)
from splurge_envelope.key_store import KeyStore
from splurge_envelope.models import IdentityScheme
from tests.test_utility import TestKeyHelper, cleanup_temp_dir, create_temp_dir


class TestKeyStorePaths(unittest.TestCase):
    """Test cases for key path handling."""

    def test_base_path_strips_artifact_suffix(self):
        """Test that artifact paths map back to the key path."""
        self.assertEqual(KeyStore.base_path("/tmp/k1"), Path("/tmp/k1"))
        self.assertEqual(KeyStore.base_path("/tmp/k1.pri.pem"), Path("/tmp/k1"))
        self.assertEqual(KeyStore.base_path("/tmp/k1.pub.pem"), Path("/tmp/k1"))

    def test_base_path_expands_user(self):
        """Test that ~ is expanded."""
        self.assertEqual(KeyStore.base_path("~/.s3encrypt"), Path(os.path.expanduser("~/.s3encrypt")))

    def test_empty_path(self):
        """Test that an empty key path is rejected."""
        with self.assertRaises(ValidationError):
            KeyStore.base_path("  ")

    def test_artifact_paths(self):
        """Test private and public artifact naming."""
        private_path, public_path = KeyStore.artifact_paths("/tmp/k1")

        self.assertEqual(private_path, Path("/tmp/k1.pri.pem"))
        self.assertEqual(public_path, Path("/tmp/k1.pub.pem"))


class TestKeyStore(unittest.TestCase):
    """Test cases for KeyStore backed by copies of cached keys."""

    def setUp(self):
        self.temp_dir = create_temp_dir()
        self.key_store = KeyStore()

    def tearDown(self):
        cleanup_temp_dir(self.temp_dir)

    def test_load_private(self):
        """Test loading a key-pair from its private artifact."""
        path = TestKeyHelper.copy_key("k1", self.temp_dir)
        key_pair = self.key_store.load_private(path)

        self.assertEqual(key_pair.identity, "k1")
        self.assertEqual(key_pair.key_size, 4096)
        self.assertEqual(key_pair.path, path)
        self.assertEqual(key_pair.fingerprint, TestKeyHelper.key_pair("k1").fingerprint)
        self.assertNotIn("PRIVATE", repr(key_pair))

    def test_load_public_matches_private(self):
        """Test that both halves agree on identity and fingerprint."""
        path = TestKeyHelper.copy_key("k1", self.temp_dir)
        key_pair = self.key_store.load_private(path)
        public_key = self.key_store.load_public(path)

        self.assertEqual(public_key, key_pair.public)
        self.assertEqual(public_key.fingerprint, key_pair.fingerprint)

    def test_load_public_without_private(self):
        """Test that only the public artifact is needed for the public half."""
        path = TestKeyHelper.copy_key("k1", self.temp_dir)
        os.remove(path + ".pri.pem")

        self.assertEqual(self.key_store.load_public(path).identity, "k1")
        with self.assertRaises(KeyNotFoundError):
            self.key_store.load_private(path)

    def test_missing_key(self):
        """Test KeyNotFoundError for missing artifacts."""
        path = os.path.join(self.temp_dir, "absent")

        self.assertFalse(self.key_store.exists(path))
        with self.assertRaises(KeyNotFoundError):
            self.key_store.load_private(path)
        with self.assertRaises(KeyNotFoundError):
            self.key_store.load_public(path)

    def test_unreadable_key(self):
        """Test KeyUnreadableError for malformed artifacts."""
        path = os.path.join(self.temp_dir, "broken")
        Path(path + ".pri.pem").write_text("garbage")
        Path(path + ".pub.pem").write_text("garbage")

        with self.assertRaises(KeyUnreadableError):
            self.key_store.load_private(path)
        with self.assertRaises(KeyUnreadableError):
            self.key_store.load_public(path)

    def test_generate_refuses_to_overwrite(self):
        """Test that existing key material is never replaced."""
        path = TestKeyHelper.copy_key("k1", self.temp_dir)
        before = Path(path + ".pri.pem").read_bytes()

        with self.assertRaises(KeyAlreadyExistsError) as context:
            self.key_store.generate(path)
        self.assertIn("Please remove", str(context.exception))
        self.assertEqual(Path(path + ".pri.pem").read_bytes(), before)

    def test_filename_identity_collision(self):
        """Test that two different keys with the same file name share an identity."""
        first_dir = os.path.join(self.temp_dir, "a")
        second_dir = os.path.join(self.temp_dir, "b")
        os.makedirs(first_dir)
        os.makedirs(second_dir)
        first = self.key_store.load_public(TestKeyHelper.copy_key("k1", first_dir, "shared"))
        second = self.key_store.load_public(TestKeyHelper.copy_key("k2", second_dir, "shared"))

        self.assertEqual(first.identity, second.identity)
        self.assertNotEqual(first.fingerprint, second.fingerprint)

    def test_fingerprint_identity(self):
        """Test the content-hash identity scheme."""
        key_store = KeyStore(config=EnvelopeConfig(identity_scheme=IdentityScheme.FINGERPRINT))
        first = key_store.load_public(TestKeyHelper.copy_key("k1", self.temp_dir, "shared"))

        self.assertEqual(first.identity, "sha256:" + first.fingerprint[:16])
        self.assertEqual(key_store.load_private(os.path.join(self.temp_dir, "shared")).identity, first.identity)


class TestKeyGeneration(unittest.TestCase):
    """Test cases for generating new key-pairs."""

    def setUp(self):
        self.temp_dir = create_temp_dir()

    def tearDown(self):
        cleanup_temp_dir(self.temp_dir)

    def test_generate(self):
        """Test generation writes both artifacts with the right permissions."""
        key_store = KeyStore()
        path = os.path.join(self.temp_dir, "nested", "k1")
        key_pair = key_store.generate(path)
        private_path, public_path = KeyStore.artifact_paths(path)

        self.assertTrue(private_path.exists())
        self.assertTrue(public_path.exists())
        self.assertEqual(key_pair.identity, "k1")
        self.assertEqual(key_pair.key_size, 4096)
        self.assertEqual(key_pair.private_key.public_key().public_numbers().e, 65537)
        self.assertEqual(stat.S_IMODE(os.stat(private_path).st_mode), 0o600)
        self.assertEqual(key_store.load_public(path).fingerprint, key_pair.fingerprint)
        self.assertEqual([p.name for p in Path(path).parent.iterdir() if p.name.startswith(".")], [])


if __name__ == "__main__":
    unittest.main()
