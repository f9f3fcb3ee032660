"""
Credbroker CLI — thin presentation layer over credbroker.broker.

Usage:
    credbroker list                             # Secrets, tiers and grant status
    credbroker get NAME                         # Print a value (exit 2 if unavailable)
    credbroker set NAME --tier restricted       # Store a value (--value or stdin)
    credbroker grant NAME CODE [--ttl 30]       # Time-limited grant, needs TOTP code
    credbroker revoke NAME                      # Drop a grant
    credbroker delete NAME --confirm            # Remove a secret
    credbroker setup-totp                       # (Re)generate the TOTP enrollment
    credbroker info                             # Broker status
    credbroker version                          # Show version
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from credbroker.errors import BrokerError, ValidationError
from credbroker.vault.models import GrantStatus, SecretSummary, parse_tier

EXIT_UNAVAILABLE = 2


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="credbroker",
        description="Credbroker — local secrets with tiered access and TOTP-gated grants.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log broker activity")

    subparsers = parser.add_subparsers(dest="command")

    list_parser = subparsers.add_parser("list", help="List all registered secrets")
    list_parser.add_argument("--json", action="store_true", help="Output JSON")

    get_parser = subparsers.add_parser("get", help="Retrieve a secret value")
    get_parser.add_argument("name", help="Secret name")
    get_parser.add_argument("--json", action="store_true", help="Output JSON")

    set_parser = subparsers.add_parser("set", help="Store a secret")
    set_parser.add_argument("name", help="Secret name")
    set_parser.add_argument(
        "--tier", default="controlled", help="Access tier (open|controlled|restricted)"
    )
    set_parser.add_argument("--description", help="Secret description")
    set_parser.add_argument("--value", help="Secret value (or read from stdin)")

    grant_parser = subparsers.add_parser("grant", help="Create a time-limited grant (requires TOTP)")
    grant_parser.add_argument("name", help="Secret name")
    grant_parser.add_argument("code", help="6-digit TOTP code")
    grant_parser.add_argument("--ttl", help="Grant duration in minutes")
    grant_parser.add_argument("--json", action="store_true", help="Output JSON")

    revoke_parser = subparsers.add_parser("revoke", help="Revoke a grant")
    revoke_parser.add_argument("name", help="Secret name")

    delete_parser = subparsers.add_parser("delete", help="Delete a secret permanently")
    delete_parser.add_argument("name", help="Secret name")
    delete_parser.add_argument("--confirm", action="store_true", help="Confirm deletion")

    totp_parser = subparsers.add_parser("setup-totp", help="Generate TOTP secret for grants")
    totp_parser.add_argument("--json", action="store_true", help="Output JSON")

    info_parser = subparsers.add_parser("info", help="Show broker configuration and status")
    info_parser.add_argument("--json", action="store_true", help="Output JSON")

    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from credbroker import __version__

        print(f"credbroker {__version__}")
        return 0

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    commands = {
        "list": _cmd_list,
        "get": _cmd_get,
        "set": _cmd_set,
        "grant": _cmd_grant,
        "revoke": _cmd_revoke,
        "delete": _cmd_delete,
        "setup-totp": _cmd_setup_totp,
        "info": _cmd_info,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    try:
        return handler(args)
    except BrokerError as e:
        _err(f"Failed to {args.command}: {e}")
        return 1


def _err(message: str) -> None:
    print(message, file=sys.stderr)


def _broker():
    from credbroker import get_broker

    return get_broker()


def _format_expiry(tier_open: bool, status: GrantStatus) -> str:
    if tier_open or status.expires_at is None:
        return "—"
    if not status.valid:
        return "expired"
    minutes = status.remaining_minutes or 0
    h, m = divmod(minutes, 60)
    return f"{h}h {m}m" if h > 0 else f"{m}m"


def _grant_label(s: SecretSummary) -> str:
    if not s.tier.gated:
        return "always"
    return "valid" if s.grant.valid else "needs grant"


def _cmd_list(args: argparse.Namespace) -> int:
    secrets = _broker().list_secrets()
    if args.json:
        print(json.dumps([s.model_dump(mode="json") for s in secrets], indent=2))
        return 0
    if not secrets:
        print("No secrets registered.")
        return 0

    width = max([20] + [len(s.name) for s in secrets])
    print(f"{'Name':<{width}}  {'Tier':<12}  {'Grant Status':<15}  Expires")
    for s in secrets:
        print(
            f"{s.name:<{width}}  {s.tier.value:<12}  {_grant_label(s):<15}  "
            f"{_format_expiry(not s.tier.gated, s.grant)}"
        )
    return 0


def _cmd_get(args: argparse.Namespace) -> int:
    value = _broker().get_secret(args.name)
    if value is None:
        _err(f"Secret '{args.name}' not found or access denied")
        return EXIT_UNAVAILABLE
    print(json.dumps({"name": args.name, "value": value}, indent=2) if args.json else value)
    return 0


def _cmd_set(args: argparse.Namespace) -> int:
    tier = parse_tier(args.tier)
    value = args.value
    if not value and not sys.stdin.isatty():
        value = sys.stdin.read().strip()
    if not value:
        _err("No value provided. Use --value or pipe to stdin.")
        return 1

    _broker().set_secret(args.name, value, tier, args.description)
    print(f"✓ Secret '{args.name}' stored (tier: {tier})")
    return 0


def _parse_ttl(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        ttl = int(raw)
    except ValueError:
        raise ValidationError("TTL must be a positive number") from None
    if ttl <= 0:
        raise ValidationError("TTL must be a positive number")
    return ttl


def _cmd_grant(args: argparse.Namespace) -> int:
    result = _broker().grant_secret(args.name, args.code, _parse_ttl(args.ttl))
    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        local = result.expires_at.astimezone()
        print(f"✓ Grant created for '{args.name}' until {local:%Y-%m-%d %H:%M:%S}")
    return 0


def _cmd_revoke(args: argparse.Namespace) -> int:
    _broker().revoke_secret(args.name)
    print(f"✓ Grant revoked for '{args.name}'")
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    if not args.confirm:
        _err("Deletion requires --confirm flag")
        return 1
    _broker().delete_secret(args.name)
    print(f"✓ Secret '{args.name}' deleted")
    return 0


def _cmd_setup_totp(args: argparse.Namespace) -> int:
    result = _broker().setup_totp()
    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
        return 0
    print("TOTP Setup")
    print()
    print(f"Secret: {result.secret}")
    print(f"URI:    {result.uri}")
    print()
    print("Enter the secret (or the URI) in your authenticator app.")
    print("Codes from any earlier setup no longer work.")
    return 0


def _cmd_info(args: argparse.Namespace) -> int:
    info = _broker().info()
    if args.json:
        print(json.dumps(info.model_dump(mode="json"), indent=2))
        return 0
    print("Credential Broker Status")
    print()
    print(f"  State dir:      {info.state_dir}")
    print(f"  Backend:        {info.backend}")
    print(f"  Secrets count:  {info.secrets_count}")
    print(f"  Active grants:  {info.active_grants}")
    print(f"  TOTP:           {'enrolled' if info.totp_enrolled else 'not set up'}")
    print(f"  Default TTL:    {info.default_ttl_minutes} min")
    print(f"  TOTP window:    ±{info.totp_window} step")
    print(f"  Audit log:      {info.audit_log}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
