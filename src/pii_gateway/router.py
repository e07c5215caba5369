"""Route decision — pick a backend from detection results and policy.

Precedence:
  1. secrets detected and action ``route_local``  → local
  2. PII detected                                 → routing.on_pii_detected
  3. otherwise                                    → routing.default

The ``block`` and ``redact`` secrets actions never influence routing: a
blocked request is rejected before this runs, and redacted secrets are
already placeholders by the time PII detection happens.
"""

from __future__ import annotations
from dataclasses import dataclass

from .types import PIIDetectionResult, Provider, RouteDecision, SecretsAction, SecretsDetectionResult


@dataclass(frozen=True)
class RoutingConfig:
    default: Provider = "upstream"
    on_pii_detected: Provider = "local"


def decide_route(
    pii_result: PIIDetectionResult,
    routing: RoutingConfig,
    secrets_result: SecretsDetectionResult | None = None,
    secrets_action: SecretsAction | None = None,
) -> RouteDecision:
    """Decide where a request goes.  Pure; never raises on valid input."""
    if secrets_result is not None and secrets_result.detected and secrets_action == "route_local":
        secret_types = [m.type for m in secrets_result.matches]
        return RouteDecision(
            provider="local",
            reason=f"Secrets detected (route_local): {', '.join(secret_types)}",
        )

    if pii_result.has_pii:
        entity_types = list(dict.fromkeys(e.entity_type for e in pii_result.new_entities))
        return RouteDecision(
            provider=routing.on_pii_detected,
            reason=f"PII detected: {', '.join(entity_types)}",
        )

    return RouteDecision(provider=routing.default, reason="No PII detected")
