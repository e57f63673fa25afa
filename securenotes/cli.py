"""Command line entry point for SecureNotes.

Usage:
    securenotes keygen DIR [--passphrase] [--force]
    securenotes encrypt SRC DEST
    securenotes decrypt SRC [-o OUT]
    securenotes edit PATH [--create]
    securenotes check PATH
    securenotes storage-info

Global options:
    --public-key PATH       Public key (default: SECURENOTES_ENCRYPTION__PUBLIC_KEY_PATH)
    --private-key PATH      Private key (default: SECURENOTES_ENCRYPTION__PRIVATE_KEY_PATH)
    --log-level LEVEL       DEBUG, INFO, WARNING, ERROR, CRITICAL (default: from config)
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from securenotes import __version__
from securenotes.core.config import SecureConfig
from securenotes.core.crypto.hybrid_engine import HybridCryptoEngine
from securenotes.core.crypto.rsa_keys import PRIVATE_KEY_FILENAME, PUBLIC_KEY_FILENAME
from securenotes.core.errors import FileAlreadyExistsError, SecureNotesError
from securenotes.core.file_ops.editing_surface import ExternalEditorSurface
from securenotes.core.file_ops.temp_files import TempFileManager
from securenotes.core.logging import configure_root_logger
from securenotes.core.storage.secure_temp import SecureTempStorage, detect_storage_profile
from securenotes.utils.paths import PRIVATE_FILE_MODE, atomic_write, create_secure_directory

logger = logging.getLogger("securenotes.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def prompt_passphrase() -> Optional[str]:
    """Ask for the private key passphrase. None if the user cancels."""
    try:
        value = getpass.getpass("Passphrase for private key: ")
    except (EOFError, KeyboardInterrupt):
        print(file=sys.stderr)
        return None
    return value or None


def _prompt_new_passphrase() -> Optional[str]:
    first = getpass.getpass("New passphrase: ")
    second = getpass.getpass("Repeat passphrase: ")
    if first != second:
        print("Passphrases do not match", file=sys.stderr)
        return None
    return first


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="securenotes",
        description="Per-file hybrid encryption for notes",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--public-key", type=Path, default=None, help="Public key PEM file")
    parser.add_argument("--private-key", type=Path, default=None, help="Private key PEM file")
    parser.add_argument(
        "--log-level",
        default=None,
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    keygen = sub.add_parser("keygen", help="Generate an RSA-4096 key pair")
    keygen.add_argument("directory", type=Path)
    keygen.add_argument("--passphrase", action="store_true", help="Protect the private key with a passphrase")
    keygen.add_argument("--force", action="store_true", help="Overwrite existing key files")

    encrypt = sub.add_parser("encrypt", help="Encrypt a file")
    encrypt.add_argument("source", type=Path)
    encrypt.add_argument("dest", type=Path)

    decrypt = sub.add_parser("decrypt", help="Decrypt a file to stdout or OUT")
    decrypt.add_argument("source", type=Path)
    decrypt.add_argument("-o", "--output", type=Path, default=None)

    edit = sub.add_parser("edit", help="Edit an encrypted file in $EDITOR")
    edit.add_argument("path", type=Path)
    edit.add_argument("--create", action="store_true", help="Create the file if it does not exist")

    check = sub.add_parser("check", help="Exit 0 if PATH is an encrypted note")
    check.add_argument("path", type=Path)

    sub.add_parser("storage-info", help="Show where decrypted copies would be kept")

    return parser


def _build_engine(args: argparse.Namespace, config: SecureConfig) -> HybridCryptoEngine:
    return HybridCryptoEngine(
        public_key_path=args.public_key,
        private_key_path=args.private_key,
        passphrase_provider=prompt_passphrase,
        config=config.encryption,
    )


def cmd_keygen(args: argparse.Namespace, config: SecureConfig) -> int:
    directory = create_secure_directory(args.directory)
    if not args.force:
        for name in (PUBLIC_KEY_FILENAME, PRIVATE_KEY_FILENAME):
            if (directory / name).exists():
                raise FileAlreadyExistsError(directory / name)

    passphrase = None
    if args.passphrase:
        passphrase = _prompt_new_passphrase()
        if not passphrase:
            return EXIT_USAGE

    paths = HybridCryptoEngine.generate_key_pair(directory, passphrase)
    print(f"Public key:  {paths.public_key_path}")
    print(f"Private key: {paths.private_key_path}")
    return EXIT_OK


def cmd_encrypt(args: argparse.Namespace, config: SecureConfig) -> int:
    engine = _build_engine(args, config)
    engine.load_public_key()
    engine.encrypt_file(args.source, args.dest)
    logger.info("Encrypted %s -> %s", args.source, args.dest)
    return EXIT_OK


def cmd_decrypt(args: argparse.Namespace, config: SecureConfig) -> int:
    engine = _build_engine(args, config)
    if not engine.unlock():
        return EXIT_FAILURE

    try:
        plaintext = engine.decrypt_file(args.source)
    finally:
        engine.lock()

    if args.output is None:
        sys.stdout.buffer.write(plaintext)
        sys.stdout.buffer.flush()
    else:
        atomic_write(args.output, plaintext, PRIVATE_FILE_MODE)
        logger.info("Decrypted %s -> %s", args.source, args.output)
    return EXIT_OK


async def _edit(args: argparse.Namespace, config: SecureConfig) -> int:
    engine = _build_engine(args, config)
    storage = SecureTempStorage(
        prefix=config.editing.temp_dir_prefix,
        overwrite_passes=config.editing.overwrite_passes,
    )
    info = storage.get_storage_info()
    if not storage.is_ram_based():
        logger.warning("Decrypted copy will be stored on disk: %s", info.description)

    manager = TempFileManager(
        engine,
        storage,
        ExternalEditorSurface.from_environment(),
        debounce_seconds=config.editing.save_debounce_seconds,
        passphrase_provider=prompt_passphrase,
        encrypted_suffix=config.editing.encrypted_suffix,
    )

    closed = False
    try:
        if args.create and not args.path.exists():
            temp_path = await manager.create(args.path)
        else:
            temp_path = await manager.open(args.path)
        if temp_path is not None:
            closed = await manager.close(temp_path)
    finally:
        disposed = await manager.dispose()
        engine.lock()

    if not disposed:
        for record in manager.records:
            print(f"Unsaved decrypted copy kept at {record.temporary_path}", file=sys.stderr)
    return EXIT_OK if closed and disposed else EXIT_FAILURE


def cmd_edit(args: argparse.Namespace, config: SecureConfig) -> int:
    return asyncio.run(_edit(args, config))


def cmd_check(args: argparse.Namespace, config: SecureConfig) -> int:
    if HybridCryptoEngine.is_encrypted_file(args.path, config.editing.encrypted_suffix):
        print(f"{args.path}: encrypted note")
        return EXIT_OK
    print(f"{args.path}: not an encrypted note")
    return EXIT_FAILURE


def cmd_storage_info(args: argparse.Namespace, config: SecureConfig) -> int:
    profile = detect_storage_profile()
    print(f"Platform:       {profile.platform.value}")
    print(f"Security level: {profile.security_level.value}")
    print(f"Base path:      {profile.base_path}")
    print(f"Description:    {profile.description}")
    return EXIT_OK


COMMANDS = {
    "keygen": cmd_keygen,
    "encrypt": cmd_encrypt,
    "decrypt": cmd_decrypt,
    "edit": cmd_edit,
    "check": cmd_check,
    "storage-info": cmd_storage_info,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = SecureConfig.get_instance()

    log_config = config.logging
    if log_config.enable_file:
        config.ensure_directories()
    configure_root_logger(
        log_dir=config.paths.log_dir,
        level=args.log_level or log_config.level,
        enable_console=log_config.enable_console,
        enable_file=log_config.enable_file,
        enable_json=log_config.enable_json,
        max_file_size=log_config.max_file_size_bytes,
        backup_count=log_config.backup_count,
    )

    try:
        return COMMANDS[args.command](args, config)
    except SecureNotesError as e:
        logger.debug("Command %s failed: %r", args.command, e)
        print(f"Error: {e.get_user_message()}", file=sys.stderr)
        return EXIT_FAILURE
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
