"""YAML/dict config loader for pii-gateway.

Supports loading from a YAML file or a plain dict (for embedding
in a larger gateway config).

Example YAML:

    pii_gateway:
      enabled: true
      mode: mask                 # "mask" or "route"
      routing:
        default: upstream
        on_pii_detected: local
      pii:
        use_presidio: true
        language: en
        supported_languages: [en, de]
        score_threshold: 0.35
        entities: [PERSON, LOCATION]
        skip_types: [DATE_TIME]
        allow_list: [safe@example.com]
      secrets:
        enabled: true
        action: redact           # "block", "redact" or "route_local"
        types: null              # null = all
        max_scan_chars: 200000
      masking:
        show_markers: false
        marker_text: "[protected]"
      vault:
        backend: sqlite          # "memory" or "sqlite"
        path: ~/.pii-gateway/vault.db
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator

import yaml

from .detector import DetectorConfig, PIIDetector
from .errors import ConfigError
from .masking import MaskingConfig
from .middleware import Gateway, GatewaySettings, PrivacyMiddleware, PreparedRequest
from .router import RoutingConfig
from .secrets_detector import DEFAULT_MAX_SCAN_CHARS
from .types import PIIDetectionResult, RouteDecision
from .vault import SECRET_TOKEN_FORMAT, Vault
from .vault_sqlite import SqliteVault

_MODES = ("mask", "route")
_PROVIDERS = ("upstream", "local")
_SECRETS_ACTIONS = ("block", "redact", "route_local")
_VAULT_BACKENDS = ("memory", "sqlite")


class _NoopMiddleware:
    """Pass-through middleware when the gateway is disabled."""
    def pre_send(self, messages: list[dict]) -> PreparedRequest:
        return PreparedRequest(
            messages=list(messages),
            decision=RouteDecision(provider="upstream", reason="Privacy gateway disabled"),
            pii=PIIDetectionResult(has_pii=False),
        )
    def post_receive(self, text: str) -> str:
        return text
    async def unmask_stream(self, source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        async for chunk in source:
            yield chunk
    @property
    def stats(self) -> dict:
        return {"pii_vault_size": 0, "secrets_vault_size": 0}


def _choice(value: Any, allowed: tuple[str, ...], name: str) -> str:
    if value not in allowed:
        raise ConfigError(f"{name} must be one of {', '.join(allowed)}; got {value!r}")
    return value


def load_config(data: dict[str, Any] | None) -> dict[str, Any]:
    """Normalize and validate a config dict (from YAML or inline).

    Raises:
        ConfigError: an enum-like value is not one of its allowed choices.
    """
    data = data or {}
    # Support nested under "pii_gateway" key or flat
    if "pii_gateway" in data:
        data = data["pii_gateway"] or {}

    routing = data.get("routing") or {}
    pii = data.get("pii") or {}
    secrets = data.get("secrets") or {}
    masking = data.get("masking") or {}
    vault = data.get("vault") or {}

    return {
        "enabled": data.get("enabled", True),
        "mode": _choice(data.get("mode", "mask"), _MODES, "mode"),
        "routing_default": _choice(routing.get("default", "upstream"), _PROVIDERS, "routing.default"),
        "routing_on_pii": _choice(
            routing.get("on_pii_detected", "local"), _PROVIDERS, "routing.on_pii_detected",
        ),
        "use_presidio": pii.get("use_presidio", True),
        "language": pii.get("language", "en"),
        "supported_languages": list(pii.get("supported_languages", ["en"])),
        "score_threshold": float(pii.get("score_threshold", 0.35)),
        "entities": pii.get("entities"),
        "skip_types": set(pii.get("skip_types", [])),
        "allow_list": set(pii.get("allow_list", [])),
        "secrets_enabled": secrets.get("enabled", True),
        "secrets_action": _choice(secrets.get("action", "redact"), _SECRETS_ACTIONS, "secrets.action"),
        "secret_types": secrets.get("types"),
        "max_scan_chars": int(secrets.get("max_scan_chars", DEFAULT_MAX_SCAN_CHARS)),
        "show_markers": masking.get("show_markers", False),
        "marker_text": masking.get("marker_text", "[protected]"),
        "vault_backend": _choice(vault.get("backend", "memory"), _VAULT_BACKENDS, "vault.backend"),
        "vault_path": vault.get("path", "vault.db"),
    }


def load_from_yaml(path: str | Path) -> dict[str, Any]:
    """Load config from a YAML file."""
    with open(path) as f:
        return load_config(yaml.safe_load(f))


def create_middleware(
    config: dict[str, Any],
    session_id: str = "default",
) -> Gateway:
    """Create a fully configured middleware from a config dict.

    Returns a pass-through gateway when ``enabled`` is false, otherwise a
    ``PrivacyMiddleware``.
    """
    cfg = config if "vault_backend" in config else load_config(config)

    if not cfg["enabled"]:
        # Return a pass-through middleware (no masking)
        return _NoopMiddleware()
    return build_privacy_middleware(cfg, session_id)


def build_privacy_middleware(cfg: dict[str, Any], session_id: str = "default") -> PrivacyMiddleware:
    """Build a ``PrivacyMiddleware`` from a normalized config, ignoring ``enabled``."""
    detector_config = DetectorConfig(
        use_presidio=cfg["use_presidio"],
        language=cfg["language"],
        supported_languages=cfg["supported_languages"],
        score_threshold=cfg["score_threshold"],
        presidio_entities=cfg.get("entities"),
        skip_types=cfg["skip_types"],
        allow_list=cfg["allow_list"],
    )
    settings = GatewaySettings(
        mode=cfg["mode"],
        routing=RoutingConfig(default=cfg["routing_default"], on_pii_detected=cfg["routing_on_pii"]),
        secrets_enabled=cfg["secrets_enabled"],
        secrets_action=cfg["secrets_action"],
        secret_types=cfg["secret_types"],
        max_scan_chars=cfg["max_scan_chars"],
        masking=MaskingConfig(show_markers=cfg["show_markers"], marker_text=cfg["marker_text"]),
    )

    if cfg["vault_backend"] == "sqlite":
        pii_vault: Vault = SqliteVault(session_id, db_path=cfg["vault_path"])
        secrets_vault: Vault = SqliteVault(
            session_id, db_path=cfg["vault_path"],
            token_format=SECRET_TOKEN_FORMAT, namespace="secret",
        )
    else:
        pii_vault = Vault()
        secrets_vault = Vault(SECRET_TOKEN_FORMAT)

    return PrivacyMiddleware(
        detector=PIIDetector(detector_config),
        pii_vault=pii_vault,
        secrets_vault=secrets_vault,
        settings=settings,
    )
