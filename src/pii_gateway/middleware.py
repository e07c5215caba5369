"""OpenAI-compatible middleware — drop-in for any proxy that uses the
chat completions format.

Request side (``pre_send``):
  1. scan for secrets; ``block`` rejects, ``redact`` swaps in placeholders
  2. scan for PII and decide the route
  3. in ``mask`` mode, mask PII before it goes upstream

Response side: ``post_receive`` for whole responses, ``unmask_stream``
for SSE.

Usage:

    mw = PrivacyMiddleware.create()
    prepared = mw.pre_send(messages)
    if prepared.decision.provider == "upstream":
        upstream = await client.stream(prepared.messages)
        async for chunk in mw.unmask_stream(upstream.aiter_bytes()):
            yield chunk
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Literal, Protocol, runtime_checkable

from .detector import DetectorConfig, PIIDetector
from .errors import SecretsBlockedError
from .masking import MaskingConfig, mask_text, unmask_text
from .router import RoutingConfig, decide_route
from .secrets_detector import DEFAULT_MAX_SCAN_CHARS, combine_results, detect_secrets, redact_secrets
from .sse import unmask_sse_stream
from .types import PIIDetectionResult, RouteDecision, SecretsAction, SecretsDetectionResult
from .vault import SECRET_TOKEN_FORMAT, Vault

logger = logging.getLogger(__name__)

Mode = Literal["mask", "route"]

# Mask mode never routes on PII; only secrets with route_local go local
_MASK_MODE_ROUTING = RoutingConfig(default="upstream", on_pii_detected="upstream")


@runtime_checkable
class Gateway(Protocol):
    """What a proxy needs from a gateway, enabled or not."""
    def pre_send(self, messages: list[dict]) -> PreparedRequest: ...
    def post_receive(self, text: str) -> str: ...
    def unmask_stream(self, source: AsyncIterable[bytes]) -> AsyncIterator[bytes]: ...
    @property
    def stats(self) -> dict: ...


@dataclass
class GatewaySettings:
    """Policy for one gateway instance."""
    mode: Mode = "mask"
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    secrets_enabled: bool = True
    secrets_action: SecretsAction = "redact"
    secret_types: list[str] | None = None       # None = all known types
    max_scan_chars: int = DEFAULT_MAX_SCAN_CHARS
    masking: MaskingConfig = field(default_factory=MaskingConfig)


@dataclass
class PreparedRequest:
    """Outcome of ``pre_send``: what to forward and where."""
    messages: list[dict]
    decision: RouteDecision
    pii: PIIDetectionResult
    secrets: SecretsDetectionResult | None = None


@dataclass
class PrivacyMiddleware:
    """Middleware that sits between client and LLM provider."""

    detector: PIIDetector
    pii_vault: Vault
    secrets_vault: Vault
    settings: GatewaySettings = field(default_factory=GatewaySettings)

    @classmethod
    def create(
        cls,
        *,
        config: DetectorConfig | None = None,
        settings: GatewaySettings | None = None,
    ) -> "PrivacyMiddleware":
        """Create a fresh middleware with its own vaults."""
        return cls(
            detector=PIIDetector(config),
            pii_vault=Vault(),
            secrets_vault=Vault(SECRET_TOKEN_FORMAT),
            settings=settings or GatewaySettings(),
        )

    def pre_send(self, messages: list[dict]) -> PreparedRequest:
        """Inspect outbound messages and prepare them for the chosen backend.

        Raises:
            SecretsBlockedError: secrets found and the action is ``block``.
        """
        settings = self.settings
        messages = list(messages)

        # --- Secrets ---
        secrets: SecretsDetectionResult | None = None
        if settings.secrets_enabled:
            per_message = [
                detect_secrets(
                    msg["content"],
                    types=settings.secret_types,
                    max_scan_chars=settings.max_scan_chars,
                )
                if isinstance(msg.get("content"), str)
                else SecretsDetectionResult(detected=False)
                for msg in messages
            ]
            secrets = combine_results(per_message)

            if secrets.detected and settings.secrets_action == "block":
                types = [m.type for m in secrets.matches]
                logger.warning("Blocking request: secrets detected (%s)", ", ".join(types))
                raise SecretsBlockedError(types)

            if secrets.detected and settings.secrets_action == "redact":
                messages = [
                    {**msg, "content": redact_secrets(msg["content"], found.redactions, self.secrets_vault)}
                    if found.detected else msg
                    for msg, found in zip(messages, per_message)
                ]

        # --- PII + routing ---
        pii = self.detector.detect(messages, self.pii_vault)
        decision = self.decide(pii, secrets)
        logger.info("Routing to %s: %s", decision.provider, decision.reason)

        if settings.mode == "mask" and decision.provider == "upstream" and pii.has_pii:
            messages = [
                {**msg, "content": mask_text(msg["content"], entities, self.pii_vault).text}
                if entities else msg
                for msg, entities in zip(messages, pii.entities_by_message)
            ]

        return PreparedRequest(messages=messages, decision=decision, pii=pii, secrets=secrets)

    def decide(
        self, pii: PIIDetectionResult, secrets: SecretsDetectionResult | None = None,
    ) -> RouteDecision:
        """Route decision under this gateway's mode and policy."""
        routing = self.settings.routing if self.settings.mode == "route" else _MASK_MODE_ROUTING
        return decide_route(pii, routing, secrets, self.settings.secrets_action)

    def post_receive(self, text: str) -> str:
        """Restore placeholders in a complete (non-streamed) response."""
        text = unmask_text(text, self.pii_vault, self.settings.masking)
        return unmask_text(text, self.secrets_vault)

    def unmask_stream(self, source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        """Restore placeholders in an upstream SSE byte stream."""
        return unmask_sse_stream(source, self.pii_vault, self.settings.masking, self.secrets_vault)

    @property
    def stats(self) -> dict:
        return {
            "pii_vault_size": self.pii_vault.size,
            "secrets_vault_size": self.secrets_vault.size,
        }
