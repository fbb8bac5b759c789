import argparse
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from .capture import load_audio_file
from .config import (
    LOG_LEVEL,
    SECRET_FILE,
    STORE_DIR,
    STRUCTURED_LOGGING,
    AuthConfig,
    get_config_summary,
)
from .constants import DEFAULT_SECRET_ENV_VAR
from .enrollment import EnrollmentController
from .exceptions import BehavioralAuthError
from .integrity_store import IntegrityStore
from .secrets_provider import EnvironmentSecretProvider, FileSecretProvider
from .storage_backends import FileSystemBackend
from .utils import configure_logging
from .verification import VerificationEngine
from .voice_features import extract_voice_features

# Initialize structured logger
logger = structlog.get_logger(__name__)


class BehavioralAuthCLI:
    """Command-line interface for inspecting and managing a profile store."""

    def __init__(self) -> None:
        configure_logging(LOG_LEVEL, STRUCTURED_LOGGING)
        self.parser = self._create_argument_parser()

    def _create_argument_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            prog="behavioral-auth",
            description="Behavioral biometric authentication - profile store management",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        parser.add_argument(
            "--store-dir",
            type=Path,
            default=STORE_DIR,
            help=f"Profile store directory. Default: {STORE_DIR}",
        )

        subparsers = parser.add_subparsers(dest="command", required=True)
        subparsers.add_parser("stats", help="Show record counts per kind.")
        subparsers.add_parser("config", help="Show the effective configuration.")

        users_parser = subparsers.add_parser("users", help="List enrolled identities.")
        users_parser.add_argument("--context", required=True, help="Context (origin) to list.")

        self._add_clear_command(subparsers)
        self._add_voice_commands(subparsers)

        return parser

    def _add_clear_command(self, subparsers) -> None:
        """Add the 'clear' command and its scopes."""
        clear_parser = subparsers.add_parser(
            "clear", help="Delete stored data for an identity, a context, or everything."
        )
        clear_parser.add_argument("--identity", help="Identity to clear (requires --context).")
        clear_parser.add_argument("--context", help="Context to clear.")
        clear_parser.add_argument(
            "--all", action="store_true", help="Delete every record in the store."
        )

    def _add_voice_commands(self, subparsers) -> None:
        """Add the 'enroll-voice' and 'verify-voice' commands."""
        enroll_parser = subparsers.add_parser(
            "enroll-voice", help="Add a voice enrollment sample from an audio file."
        )
        verify_parser = subparsers.add_parser(
            "verify-voice", help="Verify an audio file against an enrolled voice profile."
        )

        for sub in (enroll_parser, verify_parser):
            sub.add_argument("--identity", required=True)
            sub.add_argument("--context", required=True)
            sub.add_argument("audio", type=Path, help="Audio file (wav, flac, ...).")

        enroll_parser.add_argument(
            "--index", type=int, required=True, help="Sample position in the session."
        )
        verify_parser.add_argument(
            "--threshold",
            type=float,
            default=None,
            help="Similarity required to accept. Default: configured threshold.",
        )

    def _open_store(self, store_dir: Path) -> IntegrityStore:
        if os.getenv(DEFAULT_SECRET_ENV_VAR):
            provider = EnvironmentSecretProvider()
        else:
            provider = FileSecretProvider(SECRET_FILE)
        return IntegrityStore(FileSystemBackend(store_dir), provider)

    def _execute_clear_command(self, store: IntegrityStore, args: argparse.Namespace) -> int:
        if args.all:
            removed = store.wipe()
        elif args.identity and args.context:
            removed = store.delete_identity(args.context, args.identity)
        elif args.context:
            removed = store.delete_context(args.context)
        else:
            print("[ERROR] Specify --identity with --context, --context, or --all", file=sys.stderr)
            return 2

        print(f"Removed {removed} record(s).")
        return 0

    def _execute_enroll_voice(self, store: IntegrityStore, args: argparse.Namespace) -> int:
        config = AuthConfig.from_env()
        audio, sample_rate = load_audio_file(args.audio)
        features = extract_voice_features(audio, sample_rate, config)

        controller = EnrollmentController(store, config)
        progress = controller.add_sample(args.identity, args.context, args.index, features)
        print(progress.message or f"Enrollment {progress.progress} ({progress.state.value})")
        return 0

    def _execute_verify_voice(self, store: IntegrityStore, args: argparse.Namespace) -> int:
        config = AuthConfig.from_env()
        audio, sample_rate = load_audio_file(args.audio)

        engine = VerificationEngine(store, config)
        result = engine.verify_voice_audio(
            args.identity, args.context, audio, sample_rate, args.threshold
        )
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.authenticated else 1

    def _dispatch(self, args: argparse.Namespace) -> int:
        if args.command == "config":
            print(json.dumps(get_config_summary(), indent=2, default=str))
            return 0

        store = self._open_store(args.store_dir)

        if args.command == "stats":
            print(json.dumps(store.storage_stats(), indent=2))
            return 0
        if args.command == "users":
            for identity in store.list_identities(args.context):
                print(identity)
            return 0
        if args.command == "clear":
            return self._execute_clear_command(store, args)
        if args.command == "enroll-voice":
            return self._execute_enroll_voice(store, args)
        if args.command == "verify-voice":
            return self._execute_verify_voice(store, args)

        self.parser.print_help()
        return 1

    def run_from_args(self, args_list: Optional[List[str]] = None) -> int:
        """Run the CLI with provided arguments."""
        try:
            args = self.parser.parse_args(args_list)
            return self._dispatch(args)
        except BehavioralAuthError as e:
            logger.error("Command failed", command=args_list, **e.to_dict())
            print(f"\n[ERROR] {e}", file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            print("\nOperation cancelled by user.", file=sys.stderr)
            return 130


def main() -> int:
    """Main entry point for the CLI."""
    cli = BehavioralAuthCLI()
    return cli.run_from_args()


if __name__ == "__main__":
    sys.exit(main())
