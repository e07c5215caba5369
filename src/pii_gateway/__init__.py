"""PII Gateway — PII/secrets masking, routing and stream restoration for LLM traffic."""

from .conflicts import resolve_conflicts, resolve_conflicts_simple
from .detector import DetectorConfig, PIIDetector
from .errors import ConfigError, GatewayError, InvalidSpanError, SecretsBlockedError
from .masking import MaskingConfig, mask_text, unmask_text
from .middleware import Gateway, GatewaySettings, PreparedRequest, PrivacyMiddleware
from .router import RoutingConfig, decide_route
from .sse import SSEUnmasker, unmask_sse_stream
from .vault import PII_TOKEN_FORMAT, SECRET_TOKEN_FORMAT, TokenFormat, Vault
from .vault_sqlite import SqliteVault
from .config import build_privacy_middleware, create_middleware, load_config, load_from_yaml
from .types import EntityMatch, PIIDetectionResult, RouteDecision, SecretsDetectionResult

__all__ = [
    "resolve_conflicts", "resolve_conflicts_simple",
    "DetectorConfig", "PIIDetector",
    "ConfigError", "GatewayError", "InvalidSpanError", "SecretsBlockedError",
    "MaskingConfig", "mask_text", "unmask_text",
    "Gateway", "GatewaySettings", "PreparedRequest", "PrivacyMiddleware",
    "RoutingConfig", "decide_route",
    "SSEUnmasker", "unmask_sse_stream",
    "PII_TOKEN_FORMAT", "SECRET_TOKEN_FORMAT", "TokenFormat", "Vault", "SqliteVault",
    "build_privacy_middleware", "create_middleware", "load_config", "load_from_yaml",
    "EntityMatch", "PIIDetectionResult", "RouteDecision", "SecretsDetectionResult",
]
__version__ = "0.1.0"
