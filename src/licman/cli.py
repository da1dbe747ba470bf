"""CLI entry point for licman."""

import argparse
import json
import sys
import urllib.error

from .config import LicmanConfig, apply_env, config_to_yaml, load_config, load_env_file, merge_cli_args
from .registry import (
    LicenseAPIError,
    LicenseRegistry,
    LicenseRegistryClient,
    start_license_server,
)
from .sweeper import run_sweep_loop


# ---------------------------------------------------------------------------
# licman serve
# ---------------------------------------------------------------------------

def _add_serve_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument(
        "--env-file", type=str, dest="env_file", default=".env",
        help="Path to a .env file loaded before reading the environment (default: .env)",
    )
    parser.add_argument("--host", type=str, help="Address to listen on (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to listen on (default: $PORT or 8004)")
    parser.add_argument(
        "--sweep-interval", type=int, dest="sweep_interval",
        help="Seconds between expired-license sweeps (default: 86400)",
    )
    parser.add_argument(
        "--default-ttl", type=int, dest="default_ttl_ms",
        help="Lifetime in milliseconds of licenses created without an expiry (default: 3 days)",
    )
    parser.add_argument(
        "--key-length", type=int, dest="key_length",
        help="Number of characters in generated license keys (default: 6)",
    )
    parser.add_argument(
        "--max-body-bytes", type=int, dest="max_body_bytes",
        help="Largest accepted request body (default: 65536)",
    )
    parser.add_argument(
        "--no-admin-ui", action="store_false", dest="admin_ui", default=None,
        help="Do not serve the admin page at /admin",
    )
    parser.add_argument(
        "--access-log", action="store_true", dest="access_log", default=None,
        help="Log every request to stderr",
    )
    parser.add_argument(
        "--dry-run", action="store_true", dest="dry_run",
        help="Print the effective configuration and exit",
    )


def _build_config(args) -> LicmanConfig:
    """Build a LicmanConfig from config file, .env, environment and CLI overrides."""
    if args.config:
        config = load_config(args.config)
    else:
        config = LicmanConfig()
    load_env_file(args.env_file)
    apply_env(config)
    merge_cli_args(config, args)
    return config


def cmd_serve(args) -> None:
    """Run the license server until interrupted."""
    try:
        config = _build_config(args)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        print(config_to_yaml(config), end="")
        return

    try:
        registry = LicenseRegistry(
            default_ttl_ms=config.default_ttl_ms,
            key_length=config.key_length,
        )
        server = start_license_server(
            registry,
            host=config.host,
            port=config.port,
            max_body_bytes=config.max_body_bytes,
            admin_ui=config.admin_ui,
            access_log=config.access_log,
        )
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    host, port = server.server_address[:2]
    print(f"[serve] License server listening on http://{host}:{port}/", file=sys.stderr)

    # Sweep in the foreground (blocks until interrupted)
    try:
        run_sweep_loop(registry, interval=config.sweep_interval)
    except KeyboardInterrupt:
        print("\n[serve] Shutting down", file=sys.stderr)
    finally:
        server.shutdown()
        server.server_close()


# ---------------------------------------------------------------------------
# licman list / create / delete / validate
# ---------------------------------------------------------------------------

def _format_license(lic) -> str:
    return f"{lic.key}  {lic.host}  expires={lic.expires}"


def _client(args) -> LicenseRegistryClient:
    return LicenseRegistryClient(host=args.server_host, port=args.server_port)


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def cmd_list(args) -> None:
    try:
        licenses = _client(args).list_licenses()
    except (LicenseAPIError, urllib.error.URLError) as exc:
        _fail(str(exc))
    if args.format == "json":
        print(json.dumps([lic.to_dict() for lic in licenses], indent=2))
    else:
        lines = [_format_license(lic) for lic in licenses]
        print("\n".join(lines) if lines else "(no licenses)")


def cmd_create(args) -> None:
    try:
        lic = _client(args).create_license(args.host, expires=args.expires)
    except (LicenseAPIError, urllib.error.URLError) as exc:
        _fail(str(exc))
    if args.format == "json":
        print(json.dumps(lic.to_dict(), indent=2))
    else:
        print(_format_license(lic))


def cmd_delete(args) -> None:
    try:
        _client(args).delete_license(args.key)
    except LicenseAPIError as exc:
        _fail(exc.message)
    except urllib.error.URLError as exc:
        _fail(str(exc))
    print(f"Deleted {args.key}")


def cmd_validate(args) -> None:
    try:
        ok, message = _client(args).validate_license(args.key, args.host)
    except (LicenseAPIError, urllib.error.URLError) as exc:
        _fail(str(exc))
    if args.format == "json":
        print(json.dumps({"valid": ok, "message": message}))
    else:
        print(message)
    if not ok:
        sys.exit(2)


def _add_client_args(parser: argparse.ArgumentParser) -> None:
    """Add --server-host, --server-port and --format to a client sub-parser."""
    parser.add_argument(
        "--server-host", type=str, default="localhost",
        help="Hostname of the license server (default: localhost)",
    )
    parser.add_argument(
        "--server-port", type=int, default=8004,
        help="Port of the license server (default: 8004)",
    )
    parser.add_argument(
        "--format", choices=["text", "json"], default="text",
        help="Output format (default: text)",
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="licman",
        description="licman: in-memory license key server",
    )
    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the license server")
    _add_serve_args(serve_parser)
    serve_parser.set_defaults(func=cmd_serve)

    # list
    list_parser = subparsers.add_parser("list", help="List issued licenses")
    _add_client_args(list_parser)
    list_parser.set_defaults(func=cmd_list)

    # create
    create_parser = subparsers.add_parser("create", help="Issue a license for a host")
    _add_client_args(create_parser)
    create_parser.add_argument("host", type=str, help="Host the license is bound to")
    create_parser.add_argument(
        "--expires", type=int, default=None,
        help="Expiry in milliseconds since the epoch (default: server default)",
    )
    create_parser.set_defaults(func=cmd_create)

    # delete
    delete_parser = subparsers.add_parser("delete", help="Revoke a license")
    _add_client_args(delete_parser)
    delete_parser.add_argument("key", type=str, help="License key")
    delete_parser.set_defaults(func=cmd_delete)

    # validate
    validate_parser = subparsers.add_parser("validate", help="Check a key against a host")
    _add_client_args(validate_parser)
    validate_parser.add_argument("key", type=str, help="License key")
    validate_parser.add_argument("host", type=str, help="Host to validate against")
    validate_parser.set_defaults(func=cmd_validate)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)
