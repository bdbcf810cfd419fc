"""pingcount CLI entry point.

Usage: pingcount [--log-level LEVEL] <command> [options]

Commands:
    serve    run the stats server
    stats    print the stats report from a data directory
    series   print the per-day DAU/WAU/MAU series from a data directory
    rollup   rebuild every weekly/monthly bucket from daily data
    ping     send one signed ping to a running server
    keygen   create a client Ed25519 key
    secret   create a server secret for keyed identity derivation
"""
import argparse
import asyncio
import dataclasses
import json
import logging
import sys
import time
from pathlib import Path

log = logging.getLogger("pingcount")


def _add_settings_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--data-dir", help="Snapshot directory (default: data)")
    p.add_argument("--precision", type=int, help="HyperLogLog precision p")


def _add_server_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--host", help="Bind / connect address (default: 127.0.0.1)")
    p.add_argument("--port", type=int, help="Port (default: 3000)")


def _settings(args: argparse.Namespace):
    from pingcount.config import Settings
    from pingcount.crypto.identity import DerivationMode

    overrides = {}
    for arg, name in (
        ("data_dir", "data_dir"),
        ("precision", "precision"),
        ("host", "host"),
        ("port", "port"),
        ("freshness", "freshness_window_s"),
    ):
        value = getattr(args, arg, None)
        if value is not None:
            overrides[name] = value
    if getattr(args, "unkeyed", False):
        overrides["derivation"] = DerivationMode.UNKEYED
    return dataclasses.replace(Settings.from_env(), **overrides)


def _open_store(args: argparse.Namespace):
    from pingcount.store.backends import DirectoryBackend
    from pingcount.store.stats_store import StatsStore

    settings = _settings(args)
    return StatsStore.open(DirectoryBackend(settings.data_dir), settings)


def _run_serve(args: argparse.Namespace) -> None:
    from pingcount.app import build_app

    app = build_app(_settings(args))
    try:
        asyncio.run(app.server().serve_forever())
    except KeyboardInterrupt:
        log.info("Shutting down")


def _run_stats(args: argparse.Namespace) -> None:
    from pingcount.ingest.query import StatsQuery

    report = StatsQuery(_open_store(args)).report(window=args.window)
    print(json.dumps(report.to_dict(), indent=2))


def _run_series(args: argparse.Namespace) -> None:
    from pingcount.ingest.query import StatsQuery

    points = StatsQuery(_open_store(args)).series()
    print(json.dumps([p.to_dict() for p in points], indent=2))


def _run_rollup(args: argparse.Namespace) -> None:
    store = _open_store(args)
    periods = {parent for day in store.days() for parent in day.parents()}
    written = store.rollup(periods)
    store.flush()
    print(f"Rebuilt {len(written)} weekly/monthly buckets")


def _run_ping(args: argparse.Namespace) -> None:
    from pingcount.crypto.signature import PingSigner
    from pingcount.server.protocol import ServerRequest, send_request

    settings = _settings(args)
    if args.key_file:
        raw = bytes.fromhex(Path(args.key_file).read_text().strip())
        signer = PingSigner.from_private_bytes(raw)
    else:
        signer = PingSigner.generate()
    ping = signer.sign_ping(int(time.time()))
    resp = send_request(settings.host, settings.port, ServerRequest("ingest", ping.to_payload()))
    print(json.dumps({"status": resp.status, **resp.body}, indent=2))
    if not resp.ok:
        sys.exit(1)


def _run_keygen(args: argparse.Namespace) -> None:
    from pingcount.crypto.signature import PingSigner

    signer = PingSigner.generate()
    if args.out:
        Path(args.out).write_text(signer.private_bytes().hex() + "\n")
        print(f"Private key written to {args.out}")
    else:
        print(f"private: {signer.private_bytes().hex()}")
    print(f"public:  {signer.public_key.hex()}")


def _run_secret(args: argparse.Namespace) -> None:
    from pingcount.crypto.identity import generate_secret

    print(generate_secret().hex())


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="pingcount",
        description="Anonymous unique-visitor counting from signed pings.",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        help="Logging level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command")

    p = subparsers.add_parser("serve", help="Run the stats server.")
    _add_settings_args(p)
    _add_server_args(p)
    p.add_argument("--freshness", type=int, help="Accepted clock skew in seconds (default: 120)")
    p.add_argument("--unkeyed", action="store_true",
                   help="Derive identifiers without a server secret (auditable, enumerable).")

    p = subparsers.add_parser("stats", help="Print the stats report.")
    _add_settings_args(p)
    p.add_argument("--window", type=int, default=30, help="Recent days to list (default: 30)")

    p = subparsers.add_parser("series", help="Print per-day DAU/WAU/MAU.")
    _add_settings_args(p)

    p = subparsers.add_parser("rollup", help="Rebuild weekly/monthly buckets.")
    _add_settings_args(p)

    p = subparsers.add_parser("ping", help="Send one signed ping.")
    _add_server_args(p)
    p.add_argument("--key-file", help="Hex private key file (default: fresh random key)")

    p = subparsers.add_parser("keygen", help="Create a client Ed25519 key.")
    p.add_argument("--out", help="Write the private key to this file")

    subparsers.add_parser("secret", help="Create a server secret.")

    args = parser.parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command is None:
        parser.print_help()
        sys.exit(0)

    from pingcount.errors import ConfigurationError, PersistenceError

    handlers = {
        "serve": _run_serve,
        "stats": _run_stats,
        "series": _run_series,
        "rollup": _run_rollup,
        "ping": _run_ping,
        "keygen": _run_keygen,
        "secret": _run_secret,
    }
    try:
        handlers[args.command](args)
    except ConfigurationError as exc:
        log.error("Configuration error: %s", exc)
        sys.exit(2)
    except PersistenceError as exc:
        log.error("Could not write snapshots: %s", exc)
        sys.exit(1)
