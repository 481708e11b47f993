#!/usr/bin/env python3
"""Example of rotating every object in a bucket to a new key-pair."""

import logging
import os
import tempfile

from splurge_envelope import (
    EncryptedBucket,
    EnvelopeConfig,
    KeyMismatchError,
    KeyStore,
    LocalObjectStore,
    RotationStatus,
)


def main():
    """Rotate objects from k1 to k2 and show that rotation is idempotent."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    with tempfile.TemporaryDirectory() as temp_dir:
        key_store = KeyStore()
        k1 = key_store.generate(os.path.join(temp_dir, "k1"))
        k2 = key_store.generate(os.path.join(temp_dir, "k2"))

        bucket = EncryptedBucket(
            LocalObjectStore(os.path.join(temp_dir, "bucket")),
            config=EnvelopeConfig(max_workers=4),
        )
        for i in range(8):
            bucket.put_object(f"reports/{i:02d}.csv", f"id,value\n{i},{i * i}\n".encode("utf-8"), k1.public)

        print("\nFirst pass:")
        for outcome in bucket.coordinator.rotate_all("reports/", k1, k2.public):
            print(f"  {outcome.object_key}: {outcome.status.value}")

        print("\nSecond pass (nothing left to do):")
        statuses = [o.status for o in bucket.coordinator.rotate_all("reports/", k1, k2.public)]
        print(f"  already rotated: {statuses.count(RotationStatus.ALREADY_ROTATED)}/{len(statuses)}")

        print(f"\nreports/03.csv with k2: {bucket.read_object('reports/03.csv', k2)!r}")
        try:
            bucket.read_object("reports/03.csv", k1)
        except KeyMismatchError as e:
            print(f"reports/03.csv with k1: {e.kind} - {e}")


if __name__ == "__main__":
    main()
