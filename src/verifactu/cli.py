from __future__ import annotations

import argparse
import getpass
import logging
import stat
import sys
from datetime import date, datetime
from importlib.resources import files
from pathlib import Path

import yaml


def _check_keyring_available() -> bool:
    """Check if keyring is installed with a usable backend."""
    try:
        import keyring
        from keyring.backends.fail import Keyring as FailKeyring

        return not isinstance(keyring.get_keyring(), FailKeyring)
    except Exception:
        return False


def _upsert_env_var(env_file: Path, key: str, value: str) -> None:
    """Set or update a key=value pair in a .env file, creating it if needed."""
    from dotenv import set_key

    env_file.parent.mkdir(parents=True, exist_ok=True)
    if not env_file.exists():
        env_file.touch()
    set_key(str(env_file), key, value)


def _remove_env_var(env_file: Path, key: str) -> None:
    from dotenv import unset_key

    if env_file.exists():
        unset_key(str(env_file), key)


def _warn_open_permissions(env_file: Path) -> None:
    """Warn if .env file has group/other read permissions (Unix only)."""
    try:
        mode = env_file.stat().st_mode
        if mode & (stat.S_IRGRP | stat.S_IROTH):
            print(f"\n  WARNING: {env_file} is readable by other users.")
            print("  Recommended: chmod 600", env_file)
    except OSError:
        pass


def _setup_certificate(config_dir: Path) -> bool:
    """Interactive client-certificate setup. Returns True if a certificate was configured."""
    print()
    print("Client certificate")
    print("──────────────────")
    print()

    while True:
        pfx_path = input("Path to .pfx/.p12 certificate (empty to skip): ").strip()
        if not pfx_path:
            print("  Certificate setup skipped.")
            return False
        if Path(pfx_path).is_file():
            break
        print(f"  File not found: {pfx_path}")

    pfx_password = getpass.getpass("Certificate password (empty if none): ")

    print()
    print("Validating certificate…")
    try:
        from verifactu.utils.certificate import validate_certificate

        info = validate_certificate(pfx_path, pfx_password or None)
    except (OSError, ValueError) as e:
        print(f"  ERROR: invalid certificate or wrong password: {e}")
        return False

    print(f"  Subject: {info['subject']}")
    print(f"  Valid until: {info['not_after']}")
    if not info["valid"]:
        print("  WARNING: certificate is not currently valid")

    env_file = config_dir / ".env"
    _upsert_env_var(env_file, "VERIFACTU_CERT_PATH", pfx_path)

    if not pfx_password:
        _remove_env_var(env_file, "VERIFACTU_CERT_PASSWORD")
        return True

    from verifactu.config import _delete_keyring_password, _set_keyring_password

    if _check_keyring_available() and _set_keyring_password(pfx_password):
        print("  Password stored in the system keyring.")
        _remove_env_var(env_file, "VERIFACTU_CERT_PASSWORD")
    else:
        _upsert_env_var(env_file, "VERIFACTU_CERT_PASSWORD", pfx_password)
        print(f"  Password saved to {env_file}")
        _warn_open_permissions(env_file)
        _delete_keyring_password()
    return True


def _init_config() -> int:
    """Copy bundled templates to the user's config directory."""
    from verifactu.config import get_config_dir, get_data_dir

    config_dir = get_config_dir()
    templates = files("verifactu") / "templates"

    config_dir.mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)

    for name in ("issuer.yaml.example", "invoice.yaml.example"):
        dest = config_dir / name
        if dest.exists():
            print(f"  exists: {dest}")
            continue
        dest.write_bytes((templates / name).read_bytes())
        print(f"  created: {dest}")

    print()
    print(f"Configuration: {config_dir}")

    try:
        answer = input("Configure the client certificate now? [Y/n]: ").strip().lower()
        if answer in ("", "y", "yes", "s", "si"):
            _setup_certificate(config_dir)
    except (EOFError, KeyboardInterrupt):
        print()

    print()
    print("Next steps:")
    print(f"  1. cp {config_dir / 'issuer.yaml.example'} {config_dir / 'issuer.yaml'}")
    print("  2. Edit issuer.yaml with the issuer NIF and system identification")
    print("  3. Run: verifactu check")
    return 0


def _as_text(value: object) -> str:
    """Render a YAML scalar the way it was written (YAML parses timestamps)."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.strftime("%d-%m-%Y")
    return "" if value is None else str(value)


def _dates_as_text(value: object) -> object:
    """Convert YAML dates and timestamps anywhere in *value*, leaving other scalars as parsed."""
    if isinstance(value, date):
        return _as_text(value)
    if isinstance(value, dict):
        return {key: _dates_as_text(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_dates_as_text(item) for item in value]
    return value


def _load_mapping(path: str) -> dict:
    from verifactu.config import load_yaml

    data = load_yaml(Path(path))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping")
    return data


def _print_yaml(data: dict) -> None:
    print(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), end="")


def _cmd_hash(args: argparse.Namespace) -> int:
    from verifactu.services.exceptions import ValidationError
    from verifactu.services.fingerprint import generate_fingerprint

    fields = {key: _as_text(value) for key, value in _load_mapping(args.fields).items()}
    try:
        fingerprint = generate_fingerprint(fields)
    except ValidationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    _print_yaml({"hash": fingerprint.hash, "canonical_input": fingerprint.canonical_input})
    return 0


def _chain_link(previous_path: str | None):
    from verifactu.models.chain import ChainLink, PreviousRecord

    if previous_path is None:
        return ChainLink.first()
    raw = {key: _as_text(value) for key, value in _load_mapping(previous_path).items()}
    return ChainLink(previous=PreviousRecord.from_dict(raw))


def _cmd_submit(args: argparse.Namespace) -> int:
    from verifactu.config import get_cert_password, load_system_config
    from verifactu.models.invoice import Invoice
    from verifactu.services.aeat_client import AeatClient
    from verifactu.services.exceptions import VerifactuError
    from verifactu.services.submission import submit_invoice
    from verifactu.services.xml_signer import XmlDsigSigner

    raw = _dates_as_text(_load_mapping(args.invoice))
    try:
        invoice = Invoice.from_dict(raw)
        chain_link = _chain_link(args.previous)
        client = AeatClient.from_env()
        system = load_system_config()
        signer = XmlDsigSigner.from_pfx(client.cert_path, get_cert_password()) if args.sign else None
    except KeyError as e:
        print(f"Error: missing setting {e}", file=sys.stderr)
        return 1
    except VerifactuError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    generated_at = _as_text(args.generated_at) if args.generated_at else None
    record, result = submit_invoice(
        invoice, chain_link, system, client, signer=signer, generated_at=generated_at
    )
    output = result.to_dict()
    if record is not None:
        output["generated_at"] = record.generated_at
    _print_yaml(output)
    return 0 if result.ok else 1


def _cmd_check(args: argparse.Namespace) -> int:
    from verifactu.services.aeat_client import AeatClient
    from verifactu.services.exceptions import TransportError

    try:
        client = AeatClient.from_env()
    except KeyError:
        print("Error: VERIFACTU_CERT_PATH is not set. Run 'verifactu init'.", file=sys.stderr)
        return 1
    try:
        client.check_connectivity()
    except TransportError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    print(f"OK: {client.url}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="verifactu", description="VERI*FACTU record submission")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create configuration templates")

    p_hash = sub.add_parser("hash", help="compute the fingerprint of a fields file")
    p_hash.add_argument("fields", help="YAML file with the eight fingerprint fields")

    p_submit = sub.add_parser("submit", help="fingerprint and submit an invoice")
    p_submit.add_argument("invoice", help="invoice YAML file")
    p_submit.add_argument("--previous", help="YAML file with the previous record of the issuer")
    p_submit.add_argument("--generated-at", help="generation timestamp (ISO 8601 with offset)")
    p_submit.add_argument("--sign", action="store_true", help="sign the document with the client certificate")

    sub.add_parser("check", help="check the AEAT endpoint over mutual TLS")
    return parser


_COMMANDS = {
    "init": lambda args: _init_config(),
    "hash": _cmd_hash,
    "submit": _cmd_submit,
    "check": _cmd_check,
}


def main(argv: list[str] | None = None) -> None:
    """Entry point for the verifactu CLI."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        code = _COMMANDS[args.command](args)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
