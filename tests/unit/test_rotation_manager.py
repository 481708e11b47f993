"""Unit tests for the rotation coordinator."""

import json
import os
import threading
import unittest

from splurge_envelope.bucket import EncryptedBucket
from splurge_envelope.config import EnvelopeConfig
from splurge_envelope.envelope import EnvelopeCodec
from splurge_envelope.exceptions import (
    KeyMismatchError,
    KeyRotationError,
    ObjectNotFoundError,
    StoreError,
)
from splurge_envelope.file_manager import FileManager
from splurge_envelope.models import PublicKey, RotationStatus
from splurge_envelope.services.rotation.manager import RotationCoordinator
from tests.test_utility import (
    FaultyStore,
    TestKeyHelper,
    cleanup_temp_dir,
    create_temp_dir,
)


class RotationTestCase(unittest.TestCase):
    """Common fixtures: a faulty in-memory store, a bucket and two key-pairs."""

    @classmethod
    def setUpClass(cls):
        cls.k1 = TestKeyHelper.key_pair("k1")
        cls.k2 = TestKeyHelper.key_pair("k2")

    def setUp(self):
        self.temp_dir = create_temp_dir()
        self.config = EnvelopeConfig(segment_size=1024)
        self.store = FaultyStore(chunk_size=1000)
        self.bucket = EncryptedBucket(
            self.store,
            config=self.config,
            file_manager=FileManager(scratch_dir=self.temp_dir),
        )
        self.coordinator = self.bucket.coordinator

    def tearDown(self):
        cleanup_temp_dir(self.temp_dir)

    def put_legacy(self, object_key: str, plaintext: bytes, public_key: PublicKey) -> None:
        """Store an object the old way: tag inline, instruction in a sibling object."""
        ciphertext, instruction = EnvelopeCodec(config=self.config).seal_bytes(plaintext, public_key)
        self.store.put(object_key, [ciphertext], {self.config.tag_key: public_key.identity})
        self.store.put(
            self.config.instruction_key_for(object_key),
            [instruction.to_json().encode("utf-8")],
            {},
        )


class TestRotateOne(RotationTestCase):
    """Test cases for rotate_one."""

    def test_rotation_preserves_content(self):
        """Test that rotating re-keys the object without changing its content."""
        plaintext = os.urandom(5000)
        self.bucket.put_object("a.bin", plaintext, self.k1.public, metadata={"owner": "alice"})

        outcome = self.coordinator.rotate_one("a.bin", self.k1, self.k2.public)

        self.assertEqual(outcome.status, RotationStatus.ROTATED)
        self.assertEqual(outcome.instruction.key_fingerprint, self.k2.fingerprint)
        self.assertEqual(self.bucket.key_identity("a.bin"), "k2")
        self.assertEqual(self.store.get_metadata("a.bin")["owner"], "alice")
        self.assertEqual(self.bucket.read_object("a.bin", self.k2), plaintext)
        with self.assertRaises(KeyMismatchError):
            self.bucket.read_object("a.bin", self.k1)

    def test_idempotence(self):
        """Test that a second rotation is a no-op."""
        self.bucket.put_object("a.txt", b"hello", self.k1.public)
        first = self.coordinator.rotate_one("a.txt", self.k1, self.k2.public)
        puts = self.store.put_count

        second = self.coordinator.rotate_one("a.txt", self.k1, self.k2.public)

        self.assertEqual(first.status, RotationStatus.ROTATED)
        self.assertEqual(second.status, RotationStatus.ALREADY_ROTATED)
        self.assertEqual(second.instruction, first.instruction)
        self.assertEqual(self.store.put_count, puts)

    def test_wrong_old_key(self):
        """Test that a mismatched old key leaves the object untouched."""
        self.bucket.put_object("a.txt", b"hello", self.k1.public)
        k3 = TestKeyHelper.key_pair("k3")

        with self.assertRaises(KeyMismatchError) as context:
            self.coordinator.rotate_one("a.txt", k3, self.k2.public)

        self.assertEqual(context.exception.object_key, "a.txt")
        self.assertEqual(self.bucket.key_identity("a.txt"), "k1")
        self.assertEqual(self.bucket.read_object("a.txt", self.k1), b"hello")

    def test_missing_object(self):
        """Test rotating an object that does not exist."""
        with self.assertRaises(ObjectNotFoundError):
            self.coordinator.rotate_one("missing", self.k1, self.k2.public)

    def test_failed_put_keeps_old_version(self):
        """Test crash safety: a failed upload leaves the old pair readable."""
        self.bucket.put_object("a.txt", b"hello" * 1000, self.k1.public)
        self.store.fail_put_for.add("a.txt")

        with self.assertRaises(StoreError) as context:
            self.coordinator.rotate_one("a.txt", self.k1, self.k2.public)

        self.assertEqual(context.exception.object_key, "a.txt")
        self.assertEqual(self.bucket.key_identity("a.txt"), "k1")
        self.assertEqual(self.bucket.read_object("a.txt", self.k1), b"hello" * 1000)
        self.assertEqual(os.listdir(self.temp_dir), [])

        self.store.fail_put_for.clear()
        outcome = self.coordinator.rotate_one("a.txt", self.k1, self.k2.public)
        self.assertEqual(outcome.status, RotationStatus.ROTATED)

    def test_legacy_sibling_instruction(self):
        """Test rotating an object whose instruction lives in a sibling object."""
        self.put_legacy("a.txt", b"legacy", self.k1.public)

        outcome = self.coordinator.rotate_one("a.txt", self.k1, self.k2.public)

        self.assertEqual(outcome.status, RotationStatus.ROTATED)
        self.assertEqual(list(self.store.list()), ["a.txt"])
        self.assertIn(self.config.instruction_metadata_key, self.store.get_metadata("a.txt"))
        self.assertEqual(self.bucket.read_object("a.txt", self.k2), b"legacy")

    def test_sibling_cleanup_failure_then_rerun(self):
        """Test a crash after the put: readable with the new key, rerun cleans up."""
        self.put_legacy("a.txt", b"legacy", self.k1.public)
        self.store.fail_delete_for.add("a.txt.instruction")

        with self.assertRaises(StoreError):
            self.coordinator.rotate_one("a.txt", self.k1, self.k2.public)

        self.assertEqual(self.bucket.read_object("a.txt", self.k2), b"legacy")

        self.store.fail_delete_for.clear()
        outcome = self.coordinator.rotate_one("a.txt", self.k1, self.k2.public)

        self.assertEqual(outcome.status, RotationStatus.ALREADY_ROTATED)
        self.assertEqual(list(self.store.list()), ["a.txt"])

    def test_identity_collision(self):
        """Test that a tag naming the new identity with another key is not skipped."""
        shared_k1 = PublicKey(identity="shared", fingerprint=self.k1.fingerprint, key=self.k1.public.key)
        shared_k2 = PublicKey(identity="shared", fingerprint=self.k2.fingerprint, key=self.k2.public.key)
        self.bucket.put_object("a.txt", b"hello", shared_k1)

        with self.assertRaises(KeyRotationError):
            self.coordinator.rotate_one("a.txt", self.k1, shared_k2)
        self.assertEqual(self.bucket.read_object("a.txt", self.k1), b"hello")

    def test_retag_when_already_wrapped_by_new_key(self):
        """Test that only the tag changes when the new key already wraps the object."""
        alias = PublicKey(identity="alias", fingerprint=self.k1.fingerprint, key=self.k1.public.key)
        self.bucket.put_object("a.txt", b"hello", alias)
        ciphertext = b"".join(self.store.get("a.txt"))

        outcome = self.coordinator.rotate_one("a.txt", self.k1, self.k1.public)

        self.assertEqual(outcome.status, RotationStatus.ROTATED)
        self.assertEqual(self.bucket.key_identity("a.txt"), "k1")
        self.assertEqual(b"".join(self.store.get("a.txt")), ciphertext)
        self.assertEqual(
            self.coordinator.rotate_one("a.txt", self.k1, self.k1.public).status,
            RotationStatus.ALREADY_ROTATED,
        )

    def test_concurrent_rotations_are_serialized(self):
        """Test that simultaneous rotations of one object run one at a time."""
        plaintext = os.urandom(4000)
        self.bucket.put_object("shared.bin", plaintext, self.k1.public)
        workers = 6
        barrier = threading.Barrier(workers)
        statuses = []
        errors = []

        def rotate():
            barrier.wait()
            try:
                statuses.append(self.coordinator.rotate_one("shared.bin", self.k1, self.k2.public).status)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=rotate) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(statuses.count(RotationStatus.ROTATED), 1)
        self.assertEqual(statuses.count(RotationStatus.ALREADY_ROTATED), workers - 1)
        self.assertEqual(self.bucket.key_identity("shared.bin"), "k2")
        self.assertEqual(self.bucket.read_object("shared.bin", self.k2), plaintext)


class TestRotateAll(RotationTestCase):
    """Test cases for rotate_all."""

    def test_rotate_prefix(self):
        """Test bulk rotation with a failing object in the middle."""
        for name in ("p/a", "p/c", "q/outside"):
            self.bucket.put_object(name, name.encode("utf-8"), self.k1.public)
        self.bucket.put_object("p/b", b"other key", self.k2.public)
        self.put_legacy("p/d", b"legacy", self.k1.public)

        with self.assertLogs("splurge_envelope.services.rotation.manager", level="INFO") as logs:
            outcomes = {o.object_key: o for o in self.coordinator.rotate_all("p/", self.k1, self.k2.public)}

        self.assertEqual(sorted(outcomes), ["p/a", "p/b", "p/c", "p/d"])
        self.assertEqual(outcomes["p/a"].status, RotationStatus.ROTATED)
        self.assertEqual(outcomes["p/c"].status, RotationStatus.ROTATED)
        self.assertEqual(outcomes["p/d"].status, RotationStatus.ROTATED)
        # p/b is tagged k2 already
        self.assertEqual(outcomes["p/b"].status, RotationStatus.ALREADY_ROTATED)
        self.assertEqual(self.bucket.key_identity("q/outside"), "k1")
        self.assertEqual([r.event for r in logs.records][-1], "bulk_rotation_finished")

    def test_failures_do_not_stop_the_batch(self):
        """Test that a key mismatch becomes a FAILED outcome."""
        k3 = TestKeyHelper.key_pair("k3")
        self.bucket.put_object("a", b"1", self.k1.public)
        self.bucket.put_object("b", b"2", k3.public)
        self.bucket.put_object("c", b"3", self.k1.public)

        outcomes = list(self.coordinator.rotate_all("", self.k1, self.k2.public))

        self.assertEqual([o.object_key for o in outcomes], ["a", "b", "c"])
        self.assertEqual(
            [o.status for o in outcomes],
            [RotationStatus.ROTATED, RotationStatus.FAILED, RotationStatus.ROTATED],
        )
        self.assertEqual(outcomes[1].error_kind, "KeyMismatch")
        self.assertIn("(object: b)", outcomes[1].reason)

    def test_malformed_instruction_fails_only_that_object(self):
        """Test that an instruction with a wrongly typed field is reported as corrupt."""
        for name in ("a", "b", "c"):
            self.bucket.put_object(name, name.encode("utf-8"), self.k1.public)
        metadata = self.store.get_metadata("b")
        damaged = json.loads(metadata[self.config.instruction_metadata_key])
        damaged["key_fingerprint"] = 12345
        metadata[self.config.instruction_metadata_key] = json.dumps(damaged)
        self.store.put("b", [b"".join(self.store.get("b"))], metadata)

        outcomes = list(self.coordinator.rotate_all("", self.k1, self.k2.public))

        self.assertEqual(
            [o.status for o in outcomes],
            [RotationStatus.ROTATED, RotationStatus.FAILED, RotationStatus.ROTATED],
        )
        self.assertEqual(outcomes[1].error_kind, "Corrupt")
        self.assertEqual(self.bucket.read_object("c", self.k2), b"c")

    def test_lazy(self):
        """Test that nothing is rotated until outcomes are consumed."""
        self.bucket.put_object("a", b"1", self.k1.public)
        self.bucket.put_object("b", b"2", self.k1.public)

        outcomes = self.coordinator.rotate_all("", self.k1, self.k2.public)
        self.assertEqual(self.bucket.key_identity("a"), "k1")

        first = next(outcomes)
        self.assertEqual(first.object_key, "a")
        self.assertEqual(self.bucket.key_identity("b"), "k1")
        outcomes.close()

    def test_cancel_between_objects(self):
        """Test that a cancel event stops the batch at an object boundary."""
        for name in ("a", "b", "c"):
            self.bucket.put_object(name, b"x", self.k1.public)
        cancel = threading.Event()

        outcomes = []
        for outcome in self.coordinator.rotate_all("", self.k1, self.k2.public, cancel_event=cancel):
            outcomes.append(outcome)
            cancel.set()

        self.assertEqual([o.object_key for o in outcomes], ["a"])
        self.assertEqual(self.bucket.key_identity("b"), "k1")

    def test_parallel(self):
        """Test bulk rotation with several workers."""
        names = [f"obj/{i:02d}" for i in range(12)]
        for name in names:
            self.bucket.put_object(name, name.encode("utf-8") * 300, self.k1.public)

        outcomes = list(self.coordinator.rotate_all("obj/", self.k1, self.k2.public, max_workers=4))

        self.assertEqual(sorted(o.object_key for o in outcomes), names)
        self.assertTrue(all(o.status is RotationStatus.ROTATED for o in outcomes))
        for name in names:
            self.assertEqual(self.bucket.read_object(name, self.k2), name.encode("utf-8") * 300)

    def test_parallel_cancel_before_start(self):
        """Test that a pre-set cancel event schedules nothing."""
        self.bucket.put_object("a", b"x", self.k1.public)
        cancel = threading.Event()
        cancel.set()

        outcomes = list(self.coordinator.rotate_all("", self.k1, self.k2.public, max_workers=4, cancel_event=cancel))

        self.assertEqual(outcomes, [])
        self.assertEqual(self.bucket.key_identity("a"), "k1")

    def test_invalid_workers(self):
        """Test that a negative worker count is rejected."""
        with self.assertRaises(KeyRotationError):
            list(self.coordinator.rotate_all("", self.k1, self.k2.public, max_workers=-1))


class TestCoordinatorStandalone(unittest.TestCase):
    """Test a coordinator built without a bucket."""

    def test_defaults(self):
        """Test that a coordinator works with only a store."""
        k1 = TestKeyHelper.key_pair("k1")
        k2 = TestKeyHelper.key_pair("k2")
        store = FaultyStore()
        EncryptedBucket(store).put_object("a", b"hello", k1.public)

        outcome = RotationCoordinator(store).rotate_one("a", k1, k2.public)

        self.assertEqual(outcome.status, RotationStatus.ROTATED)
        self.assertEqual(EncryptedBucket(store).read_object("a", k2), b"hello")


if __name__ == "__main__":
    unittest.main()
