"""CLI interface for pii-gateway — designed to be called by a proxy.

Usage:
    # Inspect messages (stdin: JSON array of OpenAI messages)
    echo '[{"role":"user","content":"I am john@x.com"}]' | \
        python -m pii_gateway.cli scan

    # Prepare messages for the upstream (masks / redacts, prints the route)
    echo '[{"role":"user","content":"I am john@x.com"}]' | \
        python -m pii_gateway.cli --session-id sess123 mask

    # Restore a whole response, or an SSE stream
    echo 'Hello «EMAIL_ADDRESS_001»' | python -m pii_gateway.cli --session-id sess123 unmask
    curl -N ... | python -m pii_gateway.cli --session-id sess123 unmask-stream

    # Dump vault mappings
    python -m pii_gateway.cli --session-id sess123 dump

All state is persisted in SQLite so the vaults survive across calls.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, AsyncIterator

from .config import build_privacy_middleware, load_config, load_from_yaml
from .errors import GatewayError, SecretsBlockedError
from .middleware import PrivacyMiddleware
from .vault_sqlite import SqliteVault

DEFAULT_DB = os.environ.get(
    "PII_GATEWAY_DB",
    str(Path.home() / ".pii-gateway" / "vault.db"),
)
_READ_SIZE = 4096


def _build_middleware(args: argparse.Namespace) -> PrivacyMiddleware:
    cfg = load_from_yaml(args.config) if args.config else load_config({})
    cfg["vault_backend"] = "sqlite"
    cfg["vault_path"] = args.db
    if args.no_presidio:
        cfg["use_presidio"] = False
    if args.language:
        cfg["language"] = args.language
    if args.threshold is not None:
        cfg["score_threshold"] = args.threshold
    if args.mode:
        cfg["mode"] = args.mode
    if args.secrets_action:
        cfg["secrets_action"] = args.secrets_action
    return build_privacy_middleware(cfg, session_id=args.session_id)


def _close(mw: PrivacyMiddleware) -> None:
    for vault in (mw.pii_vault, mw.secrets_vault):
        if isinstance(vault, SqliteVault):
            vault.close()


def _write_json(data: Any, **kwargs: Any) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False, **kwargs)
    sys.stdout.write("\n")


def cmd_scan(args: argparse.Namespace, mw: PrivacyMiddleware) -> None:
    """Report PII and secrets in OpenAI-format messages on stdin, without masking."""
    from .secrets_detector import combine_results, detect_secrets

    messages = json.loads(sys.stdin.read())
    pii = mw.detector.detect(messages, mw.pii_vault)
    secrets = combine_results(
        detect_secrets(
            m["content"],
            types=mw.settings.secret_types,
            max_scan_chars=mw.settings.max_scan_chars,
        )
        for m in messages if isinstance(m.get("content"), str)
    )
    decision = mw.decide(pii, secrets)

    _write_json({
        "pii": [
            {"type": e.entity_type, "score": e.score, "source": e.source}
            for e in pii.new_entities
        ],
        "secrets": [asdict(m) for m in secrets.matches],
        "language": pii.language,
        "language_fallback": pii.language_fallback,
        "scan_time_ms": round(pii.scan_time_ms, 2),
        "decision": asdict(decision),
    })


def cmd_mask(args: argparse.Namespace, mw: PrivacyMiddleware) -> None:
    """Prepare OpenAI-format messages on stdin for forwarding."""
    messages = json.loads(sys.stdin.read())
    prepared = mw.pre_send(messages)
    _write_json({
        "messages": prepared.messages,
        "provider": prepared.decision.provider,
        "reason": prepared.decision.reason,
    })


def cmd_unmask(args: argparse.Namespace, mw: PrivacyMiddleware) -> None:
    """Restore tokens in text from stdin."""
    sys.stdout.write(mw.post_receive(sys.stdin.read()))


async def _stdin_chunks() -> AsyncIterator[bytes]:
    while chunk := sys.stdin.buffer.read1(_READ_SIZE):
        yield chunk


async def _pump_stream(mw: PrivacyMiddleware) -> None:
    async for chunk in mw.unmask_stream(_stdin_chunks()):
        sys.stdout.buffer.write(chunk)
        sys.stdout.buffer.flush()


def cmd_unmask_stream(args: argparse.Namespace, mw: PrivacyMiddleware) -> None:
    """Restore tokens in an SSE stream on stdin, writing SSE to stdout."""
    asyncio.run(_pump_stream(mw))


def cmd_dump(args: argparse.Namespace, mw: PrivacyMiddleware) -> None:
    """Dump vault mappings as JSON."""
    _write_json({"pii": mw.pii_vault.dump(), "secrets": mw.secrets_vault.dump()}, indent=2)


def cmd_sessions(args: argparse.Namespace, mw: PrivacyMiddleware) -> None:
    """List all sessions in the vault."""
    _write_json(mw.pii_vault.list_sessions())


def cmd_clear(args: argparse.Namespace, mw: PrivacyMiddleware) -> None:
    """Clear both vaults for a session."""
    mw.pii_vault.clear()
    mw.secrets_vault.clear()
    sys.stderr.write(f"Cleared session {args.session_id}\n")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pii_gateway",
        description="PII and secrets protection for LLM traffic",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite vault path")
    parser.add_argument("--session-id", default="default", help="Session ID")
    parser.add_argument("--no-presidio", action="store_true", help="Regex-only mode")
    parser.add_argument("--language", help="Language code")
    parser.add_argument("--threshold", type=float, help="Score threshold")
    parser.add_argument("--mode", choices=["mask", "route"], help="Gateway mode")
    parser.add_argument(
        "--secrets-action", choices=["block", "redact", "route_local"], help="Secrets policy",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("scan", help="Report PII/secrets in OpenAI messages (JSON stdin)")
    sub.add_parser("mask", help="Mask/redact OpenAI messages (JSON stdin)")
    sub.add_parser("unmask", help="Restore tokens in text (stdin)")
    sub.add_parser("unmask-stream", help="Restore tokens in an SSE stream (stdin)")
    sub.add_parser("dump", help="Dump vault mappings")
    sub.add_parser("sessions", help="List sessions")
    sub.add_parser("clear", help="Clear session vault")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    cmds = {
        "scan": cmd_scan,
        "mask": cmd_mask,
        "unmask": cmd_unmask,
        "unmask-stream": cmd_unmask_stream,
        "dump": cmd_dump,
        "sessions": cmd_sessions,
        "clear": cmd_clear,
    }

    try:
        mw = _build_middleware(args)
    except GatewayError as e:
        sys.stderr.write(json.dumps({"error": str(e)}) + "\n")
        return 2

    try:
        cmds[args.command](args, mw)
    except SecretsBlockedError as e:
        sys.stderr.write(json.dumps({"error": str(e), "secret_types": e.secret_types}) + "\n")
        return 1
    except GatewayError as e:
        sys.stderr.write(json.dumps({"error": str(e)}) + "\n")
        return 1
    finally:
        _close(mw)
    return 0


if __name__ == "__main__":
    sys.exit(main())
