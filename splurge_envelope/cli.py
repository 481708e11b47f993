#!/usr/bin/env python3
"""Command-line interface for Splurge Envelope."""

import argparse
import json
import logging
import os
import sys
from typing import Any, Optional

from splurge_envelope.bucket import EncryptedBucket
from splurge_envelope.commands import (
    Command,
    CommandRunner,
    CreateKey,
    DeleteObject,
    ListObjects,
    Open,
    RotateAll,
    RotateOne,
    Seal,
)
from splurge_envelope.config import EnvelopeConfig
from splurge_envelope.constants import Constants
from splurge_envelope.exceptions import EnvelopeError, ValidationError
from splurge_envelope.key_store import KeyStore
from splurge_envelope.models import IdentityScheme, RotationStatus
from splurge_envelope.object_store import LocalObjectStore


class EnvelopeCLI:
    """Command-line interface for encrypted buckets."""

    def __init__(self) -> None:
        """Initialize the CLI."""
        self._parser = self._create_parser()
        self._pretty = False

    def _default_key_file(self) -> str:
        """Key path used when -k is not given."""
        return os.getenv("S3E_KEY_FILE") or os.path.join("~", ".s3encrypt")

    def _default_store_dir(self) -> str:
        """Compute a platform-appropriate default directory for local buckets."""
        # Environment override for tests/CI or advanced users
        env_dir = os.getenv("S3E_STORE_DIR")
        if env_dir:
            return env_dir

        # Windows: use %APPDATA%\splurge-envelope
        appdata = os.getenv("APPDATA")
        if appdata:
            return os.path.join(appdata, "splurge-envelope", "buckets")

        # POSIX: ~/.config/splurge-envelope
        home = os.path.expanduser("~")
        if home:
            return os.path.join(home, ".config", "splurge-envelope", "buckets")

        return os.path.join(os.getcwd(), ".s3e")

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create the argument parser.

        Returns:
            Configured argument parser
        """
        parser = argparse.ArgumentParser(
            prog="splurge-envelope",
            description="Splurge Envelope - Client-side envelope encryption for object stores",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Create a key-pair (/tmp/k1.pri.pem and /tmp/k1.pub.pem)
  splurge-envelope -k /tmp/k1 create-key

  # Encrypt and upload a file
  splurge-envelope -k /tmp/k1 -b photos put -o 2024/beach.jpg -f beach.jpg

  # Download and decrypt an object
  splurge-envelope -k /tmp/k1 -b photos get -o 2024/beach.jpg -f beach.jpg

  # List objects under a prefix
  splurge-envelope -b photos list-objects -P 2024/

  # Rotate one object from k1 to k2
  splurge-envelope -k /tmp/k1 -b photos rotate -o 2024/beach.jpg -n /tmp/k2

  # Rotate every object under a prefix with 4 workers
  splurge-envelope -k /tmp/k1 -b photos rotate-all -P 2024/ -n /tmp/k2 -w 4
            """,
        )

        # Global arguments
        parser.add_argument(
            "-k",
            "--key-file",
            default=self._default_key_file(),
            help="Key path without extension (default: $S3E_KEY_FILE or ~/.s3encrypt)",
        )
        parser.add_argument(
            "-s",
            "--store-dir",
            default=self._default_store_dir(),
            help="Directory holding local buckets (default: $S3E_STORE_DIR or platform config dir)",
        )
        parser.add_argument(
            "-b",
            "--bucket",
            default="s3encrypt",
            help="Bucket name (default: s3encrypt)",
        )
        parser.add_argument(
            "--identity-scheme",
            choices=[scheme.value for scheme in IdentityScheme],
            default=IdentityScheme.FILENAME.value,
            help="How key identities are derived (default: filename)",
        )
        parser.add_argument(
            "--pretty",
            action="store_true",
            help="Pretty-print JSON outputs",
        )
        parser.add_argument(
            "-v",
            "--verbose",
            action="count",
            default=0,
            help="Log progress to stderr (-vv for debug output)",
        )

        # Subcommands
        subparsers = parser.add_subparsers(
            dest="command",
            help="Available commands",
        )

        subparsers.add_parser(
            "create-key",
            help="Create a new key-pair at the key path",
        )

        put_parser = subparsers.add_parser(
            "put",
            help="Encrypt a local file and upload it",
        )
        put_parser.add_argument(
            "-o",
            "--object-key",
            required=True,
            help="Key to store the object under",
        )
        put_parser.add_argument(
            "-f",
            "--file",
            required=True,
            help="Local file to encrypt",
        )
        put_parser.add_argument(
            "-m",
            "--meta-data",
            help="JSON object of extra string metadata (or @file, @- for stdin)",
        )

        get_parser = subparsers.add_parser(
            "get",
            help="Download an object and decrypt it into a local file",
        )
        get_parser.add_argument(
            "-o",
            "--object-key",
            required=True,
            help="Key of the object to download",
        )
        get_parser.add_argument(
            "-f",
            "--file",
            required=True,
            help="Destination file",
        )

        list_parser = subparsers.add_parser(
            "list-objects",
            help="List objects in the bucket",
        )
        list_parser.add_argument(
            "-P",
            "--prefix",
            default="",
            help="Only list keys starting with this prefix",
        )

        remove_parser = subparsers.add_parser(
            "remove",
            help="Delete an object and any sibling instruction",
        )
        remove_parser.add_argument(
            "-o",
            "--object-key",
            required=True,
            help="Key of the object to delete",
        )

        rotate_parser = subparsers.add_parser(
            "rotate",
            help="Rotate one object from the current key to a new key",
        )
        rotate_parser.add_argument(
            "-o",
            "--object-key",
            required=True,
            help="Key of the object to rotate",
        )
        rotate_parser.add_argument(
            "-n",
            "--new-key-file",
            required=True,
            help="Path of the new key (only its public half is read)",
        )

        rotate_all_parser = subparsers.add_parser(
            "rotate-all",
            help="Rotate every object under a prefix",
        )
        rotate_all_parser.add_argument(
            "-P",
            "--prefix",
            default="",
            help="Only rotate keys starting with this prefix",
        )
        rotate_all_parser.add_argument(
            "-n",
            "--new-key-file",
            required=True,
            help="Path of the new key (only its public half is read)",
        )
        rotate_all_parser.add_argument(
            "-w",
            "--workers",
            type=int,
            default=1,
            help=f"Objects rotated in parallel (1-{Constants.MAX_WORKERS()}, default: 1)",
        )

        return parser

    def _configure_logging(self, verbosity: int) -> None:
        """Send log records to stderr when requested."""
        if verbosity <= 0:
            return
        logging.basicConfig(
            level=logging.DEBUG if verbosity > 1 else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

    def _get_runner(self, args: argparse.Namespace) -> CommandRunner:
        """Build a CommandRunner for the selected bucket."""
        return self._get_runner_with_dependencies(
            store_dir=args.store_dir,
            bucket=args.bucket,
            identity_scheme=args.identity_scheme,
            max_workers=getattr(args, "workers", 1)
        )

    def _get_runner_with_dependencies(
        self,
        *,
        store_dir: str,
        bucket: str,
        identity_scheme: str,
        max_workers: int = 1
    ) -> CommandRunner:
        """Build a CommandRunner with explicit dependencies.

        Args:
            store_dir: Directory holding local buckets
            bucket: Bucket name
            identity_scheme: Identity scheme name
            max_workers: Default parallelism for bulk rotation

        Raises:
            ValidationError: If the arguments are invalid
        """
        if not bucket or os.sep in bucket or bucket.startswith("."):
            raise ValidationError(f"Invalid bucket name: {bucket!r}")
        try:
            config = EnvelopeConfig(identity_scheme=identity_scheme, max_workers=max_workers)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        store = LocalObjectStore(os.path.join(os.path.expanduser(store_dir), bucket))
        return CommandRunner(EncryptedBucket(store, config=config), KeyStore(config=config))

    def _parse_metadata(self, json_str: str | None) -> dict[str, str]:
        """Parse a JSON metadata object, a @file reference, or @- for stdin."""
        if not json_str:
            return {}
        try:
            if json_str.startswith("@"):
                ref = json_str[1:]
                if ref == "-":
                    data = json.loads(sys.stdin.read())
                else:
                    with open(ref, "r", encoding="utf-8") as f:
                        data = json.load(f)
            else:
                data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON: {e}") from e
        except OSError as e:
            raise ValidationError(f"Failed to read JSON: {e}") from e

        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise ValidationError("Metadata must be a JSON object of string values")
        return data

    def _print_json(self, payload: dict[str, Any]) -> None:
        """Print a JSON payload to stdout."""
        print(json.dumps(payload, indent=2 if self._pretty else None))

    def _print_error(self, *, message: str, code: str = "error", extra: dict[str, Any] | None = None) -> None:
        """Print a JSON error to stderr and exit non-zero."""
        error_obj = {
            "success": False,
            "error_code": code,
            "message": message,
        }
        if extra:
            error_obj["data"] = extra
        print(json.dumps(error_obj, indent=2 if self._pretty else None), file=sys.stderr)
        sys.exit(1)

    def _build_command(self, args: argparse.Namespace) -> Command:
        """Map parsed arguments onto a typed command."""
        if args.command == "create-key":
            return CreateKey(key_path=args.key_file)
        if args.command == "put":
            return Seal(
                object_key=args.object_key,
                source=args.file,
                key_path=args.key_file,
                metadata=self._parse_metadata(args.meta_data),
            )
        if args.command == "get":
            return Open(object_key=args.object_key, destination=args.file, key_path=args.key_file)
        if args.command == "list-objects":
            return ListObjects(prefix=args.prefix)
        if args.command == "remove":
            return DeleteObject(object_key=args.object_key)
        if args.command == "rotate":
            return RotateOne(
                object_key=args.object_key,
                old_key_path=args.key_file,
                new_key_path=args.new_key_file,
            )
        if args.command == "rotate-all":
            return RotateAll(
                prefix=args.prefix,
                old_key_path=args.key_file,
                new_key_path=args.new_key_file,
                max_workers=args.workers,
            )
        raise ValidationError(f"Unknown command: {args.command}")

    def _handle_rotate_all(self, runner: CommandRunner, command: RotateAll) -> None:
        """Stream one JSON line per object, then a summary."""
        counts = {status: 0 for status in RotationStatus}
        for outcome in runner.execute(command):
            counts[outcome.status] += 1
            print(json.dumps(outcome.to_dict()), flush=True)

        failed = counts[RotationStatus.FAILED]
        self._print_json({
            "success": failed == 0,
            "command": "rotate-all",
            "prefix": command.prefix,
            "rotated": counts[RotationStatus.ROTATED],
            "already_rotated": counts[RotationStatus.ALREADY_ROTATED],
            "failed": failed,
        })
        if failed:
            sys.exit(1)

    def run(self, args: Optional[list[str]] = None) -> None:
        """Run the CLI with given arguments."""
        try:
            parsed_args = self._parser.parse_args(args)
            self._pretty = bool(getattr(parsed_args, "pretty", False))
            self._configure_logging(parsed_args.verbose)

            if not parsed_args.command:
                self._print_error(message="No command specified", code="missing_command")

            command = self._build_command(parsed_args)
            runner = self._get_runner(parsed_args)

            if isinstance(command, RotateAll):
                self._handle_rotate_all(runner, command)
                return

            result = runner.execute(command)
            self._print_json({
                "success": True,
                "command": parsed_args.command,
                **result.to_dict(),
            })

        except EnvelopeError as e:
            extra = {"object_key": e.object_key} if e.object_key is not None else None
            self._print_error(message=str(e), code=e.kind, extra=extra)
        except KeyboardInterrupt:
            self._print_error(message="Operation cancelled by user", code="cancelled")
        except Exception as e:
            self._print_error(message=str(e), code="unexpected_error")


def main() -> None:
    """Main entry point for the CLI."""
    cli = EnvelopeCLI()
    cli.run()


if __name__ == "__main__":
    main()
