#!/usr/bin/env python3
"""
calonik identity service.

Resolves who is making each API request (federated bearer token, device
fingerprint, or anonymous session) and hosts the popup login entry points.
"""

import argparse
import getpass
import json
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep calonik imports lazy (inside functions) so `--hash-admin-key` does not
# pull in the web stack.
#


def describe_config() -> dict:
    """Effective auth configuration, without secrets."""
    from calonik.auth.config import load_auth_config
    from calonik.completion.timing import load_handshake_timing

    cfg = load_auth_config()
    timing = load_handshake_timing()
    return {
        "federated": {
            "enabled": cfg.oidc_enabled,
            "discovery_url": cfg.oidc_discovery_url,
            "client_id": cfg.oidc_client_id,
            "allowed_domains": cfg.allowed_domains,
        },
        "device": {"header": cfg.device_header},
        "session": {
            "signing_configured": bool(cfg.session_secret),
            "ttl_seconds": cfg.session_ttl_seconds,
            "cookie_secure": cfg.cookie_secure,
            "public_base_url": cfg.public_base_url,
        },
        "admin": {"enabled": cfg.admin_enabled, "session_id": cfg.admin_session_id},
        "usage": {"daily_limit": cfg.usage_daily_limit},
        "handshake": {
            "broadcast_delays_ms": list(timing.broadcast_delays_ms),
            "success_close_ms": timing.success_close_ms,
            "error_close_ms": timing.error_close_ms,
            "reload_interval_ms": timing.reload_interval_ms,
            "max_reloads": timing.max_reloads,
            "home_path": timing.home_path,
        },
    }


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="calonik identity service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API server
  python main.py --serve --port 8080

  # Show the effective (non-secret) auth configuration
  python main.py --check-config

  # Produce a bcrypt hash to put in ADMIN_SECRET instead of the plain key
  python main.py --hash-admin-key
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")
    parser.add_argument("--check-config", action="store_true", help="Print effective auth configuration as JSON")
    parser.add_argument(
        "--hash-admin-key", action="store_true", help="Read an admin key from the terminal and print its bcrypt hash"
    )

    args = parser.parse_args()

    if args.serve:
        from calonik.api.app import run

        run(host=args.host, port=args.port)
        return

    if args.check_config:
        print(json.dumps(describe_config(), indent=2, sort_keys=False))
        return

    if args.hash_admin_key:
        from calonik.auth.admin import hash_admin_key

        key = getpass.getpass("Admin key: ")
        if not key:
            print("Admin key must not be empty", file=sys.stderr)
            sys.exit(1)
        print(hash_admin_key(key))
        return

    parser.print_help()


if __name__ == "__main__":
    main()
