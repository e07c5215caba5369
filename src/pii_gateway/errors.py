"""Exceptions raised by pii-gateway."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all pii-gateway errors."""


class InvalidSpanError(GatewayError, ValueError):
    """A span violates ``start < end``."""

    def __init__(self, span: object) -> None:
        super().__init__(f"invalid span (start must be < end): {span!r}")
        self.span = span


class ConfigError(GatewayError, ValueError):
    """Configuration value is missing or not one of the allowed choices."""


class SecretsBlockedError(GatewayError):
    """Request rejected because it carries secrets and the action is ``block``."""

    def __init__(self, secret_types: list[str]) -> None:
        super().__init__(f"Request blocked: secrets detected ({', '.join(secret_types)})")
        self.secret_types = secret_types
