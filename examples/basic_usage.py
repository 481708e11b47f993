#!/usr/bin/env python3
"""Example usage of Splurge Envelope with a local directory bucket."""

import os
import tempfile

from splurge_envelope import EncryptedBucket, KeyStore, LocalObjectStore


def main():
    """Encrypt, list, decrypt and delete objects in a local bucket."""

    with tempfile.TemporaryDirectory() as temp_dir:
        print(f"Using temporary directory: {temp_dir}")

        # Create a key-pair: writes k1.pri.pem (owner-only) and k1.pub.pem
        key_store = KeyStore()
        key_pair = key_store.generate(os.path.join(temp_dir, "k1"))
        print(f"Created key '{key_pair.identity}' ({key_pair.fingerprint[:16]}...)")

        bucket = EncryptedBucket(LocalObjectStore(os.path.join(temp_dir, "bucket")))

        # Uploading only needs the public half
        public_key = key_store.load_public(os.path.join(temp_dir, "k1"))
        bucket.put_object("notes/hello.txt", b"hello world", public_key)
        bucket.put_object(
            "notes/todo.txt",
            b"rotate keys every quarter",
            public_key,
            metadata={"owner": "ops"},
        )

        print("\nObjects in bucket:")
        for object_key in bucket.list_objects("notes/"):
            print(f"  {object_key} (key: {bucket.key_identity(object_key)})")

        print("\nDecrypted contents:")
        for object_key in bucket.list_objects("notes/"):
            print(f"  {object_key}: {bucket.read_object(object_key, key_pair).decode('utf-8')}")

        bucket.delete_object("notes/todo.txt")
        print(f"\nAfter delete: {list(bucket.list_objects())}")


if __name__ == "__main__":
    main()
