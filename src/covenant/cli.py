"""Covenant CLI — command-line interface for the attestation engine.

Usage:
    python -m covenant.cli templates
    python -m covenant.cli create --action public-notice --fields '{"title": "...", "statement": "..."}'
    python -m covenant.cli sign --id att_... --seed <hex ed25519 seed> --role property --name Ana
    python -m covenant.cli verify --id att_...
    python -m covenant.cli export --id att_... [--text]
    python -m covenant.cli audit --id att_...
    python -m covenant.cli publish-pending
    python -m covenant.cli commit-proof --fact 0.8:5.0:benzene --fact 12:10:toluene
    python -m covenant.cli commit-proof --id att_... --field parties.0.split --threshold 50
    python -m covenant.cli status

State persists under --data (default: COVENANT_DATA_DIR, else ./data).
Run one covenant process at a time against a given data directory.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from covenant.config import Settings
from covenant.crypto.signatures import public_key_hex, sign_message
from covenant.models.attestation import signing_message
from covenant.observability import configure_logging
from covenant.service import CovenantService, ServiceResult


DEFAULT_DATA = Path.cwd() / "data"


def _make_service(args: argparse.Namespace) -> CovenantService:
    """Create a CovenantService with durable persistence."""
    settings = dataclasses.replace(
        args.settings,
        config_dir=args.config or args.settings.config_dir,
        data_dir=args.data or args.settings.data_dir or DEFAULT_DATA,
    )
    return CovenantService.from_settings(settings)


def _emit(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, sort_keys=True, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _number(text: str) -> int | Decimal:
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None
    if not value.is_finite():
        raise argparse.ArgumentTypeError(f"not a finite number: {text!r}")
    return int(value) if value == value.to_integral_value() else value


def _fact(text: str) -> tuple[int | Decimal, int | Decimal, str]:
    """Parse VALUE:THRESHOLD:LABEL."""
    parts = text.split(":", 2)
    if len(parts) != 3 or not parts[2]:
        raise argparse.ArgumentTypeError(f"expected VALUE:THRESHOLD:LABEL, got {text!r}")
    return _number(parts[0]), _number(parts[1]), parts[2]


def _load_fields(args: argparse.Namespace) -> Any:
    if args.fields_file is not None:
        return json.loads(args.fields_file.read_text(encoding="utf-8"))
    return json.loads(args.fields)


# ------------------------------------------------------------------ #
# Commands                                                            #
# ------------------------------------------------------------------ #

def cmd_templates(args: argparse.Namespace) -> int:
    return _emit(_make_service(args).available_templates())


def cmd_create(args: argparse.Namespace) -> int:
    try:
        fields = _load_fields(args)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Failed: cannot read fields: {e}", file=sys.stderr)
        return 1
    service = _make_service(args)
    return _emit(service.create_attestation(args.action, fields, subject=args.subject))


def cmd_sign(args: argparse.Namespace) -> int:
    """Sign locally with an operator-held seed, then submit the signature."""
    service = _make_service(args)
    current = service.get_attestation(args.id)
    if not current.success:
        return _emit(current)
    try:
        pubkey = public_key_hex(args.seed)
        signature = sign_message(args.seed, signing_message(current.data["content_hash"]))
    except ValueError as e:
        print(f"Failed: invalid signing seed: {e}", file=sys.stderr)
        return 1
    return _emit(service.sign_attestation(args.id, pubkey, signature, args.role, args.name))


def cmd_verify(args: argparse.Namespace) -> int:
    result = _make_service(args).verify_attestation(args.id)
    code = _emit(result)
    if code == 0 and not result.data.get("all_valid", False):
        return 2
    return code


def cmd_export(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if args.text:
        result = service.contract_text(args.id)
        if result.success:
            print(result.data["text"])
            return 0
        return _emit(result)
    return _emit(service.export_attestation(args.id))


def cmd_list(args: argparse.Namespace) -> int:
    return _emit(_make_service(args).list_attestations())


def cmd_audit(args: argparse.Namespace) -> int:
    result = _make_service(args).audit_trail(args.id)
    code = _emit(result)
    if code == 0 and not result.data["chain_valid"]:
        return 2
    return code


def cmd_publish_pending(args: argparse.Namespace) -> int:
    return _emit(_make_service(args).publish_pending())


def cmd_commit_proof(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if args.id:
        if not args.field or args.threshold is None:
            print("Failed: --id needs --field and --threshold", file=sys.stderr)
            return 1
        return _emit(service.prove_field(args.id, args.field, args.threshold, label=args.label))
    if not args.fact:
        print("Failed: give --fact VALUE:THRESHOLD:LABEL or --id/--field/--threshold", file=sys.stderr)
        return 1
    return _emit(service.prove_values(args.fact))


def cmd_status(args: argparse.Namespace) -> int:
    status = _make_service(args).status()
    print(json.dumps(status, indent=2))
    return 0


# ------------------------------------------------------------------ #
# Parser                                                              #
# ------------------------------------------------------------------ #

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="covenant",
        description="Covenant — attestation and privacy-commitment engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config directory (default: COVENANT_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Path to data directory (default: COVENANT_DATA_DIR or ./data)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("templates", help="List contract templates")

    p_create = sub.add_parser("create", help="Create an attestation")
    p_create.add_argument("--action", required=True, help="Template action name")
    source = p_create.add_mutually_exclusive_group(required=True)
    source.add_argument("--fields", help="Template fields as a JSON object")
    source.add_argument("--fields-file", type=Path, help="File holding the fields JSON")
    p_create.add_argument("--subject", help="Subject (default: contract:<action>)")

    p_sign = sub.add_parser("sign", help="Sign an attestation with a local Ed25519 seed")
    p_sign.add_argument("--id", required=True, help="Attestation ID")
    p_sign.add_argument("--seed", required=True, help="Hex-encoded 32-byte Ed25519 seed")
    p_sign.add_argument("--role", required=True, help="Key role (property, contractual, ...)")
    p_sign.add_argument("--name", default="Anonymous", help="Signer display name")

    p_verify = sub.add_parser("verify", help="Re-verify all signatures")
    p_verify.add_argument("--id", required=True, help="Attestation ID")

    p_export = sub.add_parser("export", help="Export an attestation")
    p_export.add_argument("--id", required=True, help="Attestation ID")
    p_export.add_argument("--text", action="store_true", help="Print the rendered contract text")

    sub.add_parser("list", help="List attestations")

    p_audit = sub.add_parser("audit", help="Show and check an audit trail")
    p_audit.add_argument("--id", required=True, help="Attestation ID")

    sub.add_parser("publish-pending", help="Publish pending audit events to the ledger")

    p_proof = sub.add_parser("commit-proof", help="Commit to values and prove thresholds")
    p_proof.add_argument(
        "--fact", type=_fact, action="append",
        help="VALUE:THRESHOLD:LABEL (repeat for a batch)",
    )
    p_proof.add_argument("--id", help="Attestation ID to prove a field of")
    p_proof.add_argument("--field", help="Dotted field path, e.g. parties.0.split")
    p_proof.add_argument("--threshold", type=_number, help="Public threshold for --field")
    p_proof.add_argument("--label", help="Public label (default: <id>:<field>)")

    sub.add_parser("status", help="Show engine status")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        args.settings = Settings.from_env()
    except ValueError as e:
        print(f"Failed: invalid configuration: {e}", file=sys.stderr)
        return 1
    configure_logging(args.settings.environment, args.settings.log_level)

    commands = {
        "templates": cmd_templates,
        "create": cmd_create,
        "sign": cmd_sign,
        "verify": cmd_verify,
        "export": cmd_export,
        "list": cmd_list,
        "audit": cmd_audit,
        "publish-pending": cmd_publish_pending,
        "commit-proof": cmd_commit_proof,
        "status": cmd_status,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
