"""Vault — session-scoped bidirectional mapping between originals and tokens.

A vault is the masking (or, for secrets, redaction) context: it mints
placeholder tokens, restores them, and knows the token grammar well enough
to tell whether a dangling suffix of streamed text might still become one.

Design goals:
  - Deterministic: same value always maps to the same token within a session
  - Fast: dict lookups plus one compiled pattern, no per-token scanning
  - Rehydration-safe: token grammars use delimiters that don't occur in prose
"""

from __future__ import annotations
import re
from collections import defaultdict
from dataclasses import dataclass
from functools import cached_property

_BODY_CHARS = re.compile(r"[A-Z0-9_]*")
_TYPE_CLEAN = re.compile(r"[^A-Z0-9_]+")


@dataclass(frozen=True)
class TokenFormat:
    """Placeholder grammar: ``open + prefix + TYPE + "_" + NNN + close``."""
    open: str
    close: str
    prefix: str = ""
    max_length: int = 64   # tokens are never longer; bounds stream buffers
    max_counter_digits: int = 6

    def format(self, entity_type: str, idx: int) -> str:
        return f"{self.open}{self.prefix}{entity_type}_{idx:03d}{self.close}"

    def fit_type(self, entity_type: str) -> str:
        """Shorten a normalized type so its tokens stay within ``max_length``."""
        room = (
            self.max_length - len(self.open) - len(self.prefix) - len(self.close)
            - 1 - self.max_counter_digits
        )
        if len(entity_type) <= room:
            return entity_type
        return entity_type[:room].rstrip("_")

    @cached_property
    def pattern(self) -> re.Pattern[str]:
        return re.compile(
            re.escape(self.open)
            + re.escape(self.prefix)
            + r"[A-Z][A-Z0-9_]*_\d{3,}"
            + re.escape(self.close)
        )

    def could_be_prefix(self, s: str) -> bool:
        """True if ``s`` is an incomplete token that more text could finish."""
        if not s or len(s) >= self.max_length:
            return False
        if len(s) <= len(self.open):
            return self.open.startswith(s)
        if not s.startswith(self.open):
            return False

        rest = s[len(self.open):]
        if len(rest) <= len(self.prefix):
            return self.prefix.startswith(rest)
        if not rest.startswith(self.prefix):
            return False

        body = rest[len(self.prefix):]
        # A multi-char close delimiter may itself be cut in half
        for k in range(len(self.close) - 1, 0, -1):
            if body.endswith(self.close[:k]):
                body = body[:-k]
                break
        return _BODY_CHARS.fullmatch(body) is not None


# «PERSON_001»: guillemets don't occur in normal text
PII_TOKEN_FORMAT = TokenFormat(open="«", close="»")
# [[SECRET_API_KEY_OPENAI_001]]: disjoint from the PII grammar
SECRET_TOKEN_FORMAT = TokenFormat(open="[[", close="]]", prefix="SECRET_")


def normalize_type(entity_type: str) -> str:
    """Coerce an entity type into the token alphabet (letter first)."""
    cleaned = _TYPE_CLEAN.sub("_", entity_type.upper()).strip("_")
    if not cleaned:
        return "ENTITY"
    if not cleaned[0].isalpha():
        return f"ENTITY_{cleaned}"
    return cleaned


class Vault:
    """Bidirectional original ↔ token store, scoped to a session/conversation."""

    __slots__ = ("_format", "_pii_to_token", "_token_to_pii", "_counters")

    def __init__(self, token_format: TokenFormat = PII_TOKEN_FORMAT) -> None:
        self._format = token_format
        self._pii_to_token: dict[str, str] = {}    # "EMAIL_ADDRESS::john@x.com" → «EMAIL_ADDRESS_001»
        self._token_to_pii: dict[str, str] = {}    # «EMAIL_ADDRESS_001» → "john@x.com"
        self._counters: dict[str, int] = defaultdict(int)

    @property
    def token_format(self) -> TokenFormat:
        return self._format

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def get_or_create_token(self, entity_type: str, original: str) -> str:
        """Return existing token or create a new one for this value."""
        entity_type = self._token_type(entity_type)
        key = f"{entity_type}::{original}"
        if key in self._pii_to_token:
            return self._pii_to_token[key]

        self._counters[entity_type] += 1
        token = self._format.format(entity_type, self._counters[entity_type])
        self._store(key, token, original)
        return token

    def _token_type(self, entity_type: str) -> str:
        return self._format.fit_type(normalize_type(entity_type))

    def _store(self, key: str, token: str, original: str) -> None:
        self._pii_to_token[key] = token
        self._token_to_pii[token] = original

    def mask(self, value: str, entity_type: str) -> str:
        return self.get_or_create_token(entity_type, value)

    def lookup_token(self, token: str) -> str | None:
        """Look up the original value for a token."""
        return self._token_to_pii.get(token)

    unmask = lookup_token

    def lookup_pii(self, entity_type: str, original: str) -> str | None:
        """Look up the token for a value."""
        return self._pii_to_token.get(f"{self._token_type(entity_type)}::{original}")

    def knows_value(self, original: str) -> bool:
        return original in self._token_to_pii.values()

    def rehydrate(self, text: str) -> str:
        """Replace all known tokens in text with their original values."""
        return self._format.pattern.sub(
            lambda m: self._token_to_pii.get(m.group(), m.group()), text
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._token_to_pii)

    def dump(self) -> dict[str, str]:
        """Return a copy of the token→original mapping (for debugging)."""
        return dict(self._token_to_pii)

    def clear(self) -> None:
        self._pii_to_token.clear()
        self._token_to_pii.clear()
        self._counters.clear()
