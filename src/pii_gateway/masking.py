"""Masking and unmasking against a vault, whole-text and chunk-by-chunk.

Streamed model output arrives in fragments that can cut a placeholder
anywhere:
    «PER  →  «PERSON_  →  «PERSON_001»

The chunk functions take ``(buffer, new_text)`` and return the text that is
safe to emit now plus the suffix that must wait for the next chunk because
it might still turn into a token.  ``buffer + new_text`` is always exactly
``unresolved(output) + remaining_buffer``.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Callable, Iterable

from .types import EntityMatch, MaskedMessage, StreamChunkResult
from .vault import Vault


@dataclass
class MaskingConfig:
    """Formatting options applied when restoring PII."""
    show_markers: bool = False
    marker_text: str = "[protected]"


def mask_text(text: str, entities: Iterable[EntityMatch], vault: Vault) -> MaskedMessage:
    """Replace entity spans with vault tokens.

    Entities must already be conflict-resolved.  Replacement runs
    right-to-left so earlier offsets stay valid.
    """
    entities = list(entities)
    token_map: dict[str, str] = {}
    result = text
    for match in sorted(entities, key=lambda m: m.start, reverse=True):
        original = text[match.start:match.end]
        token = vault.mask(original, match.entity_type)
        token_map[token] = original
        result = result[:match.start] + token + result[match.end:]
    return MaskedMessage(text=result, entities=entities, token_map=token_map)


def _restorer(vault: Vault, config: MaskingConfig | None) -> Callable[[re.Match[str]], str]:
    def restore(m: re.Match[str]) -> str:
        original = vault.lookup_token(m.group())
        if original is None:
            # Not ours (or hallucinated), left verbatim
            return m.group()
        if config is not None and config.show_markers:
            return config.marker_text + original
        return original
    return restore


def unmask_text(text: str, vault: Vault, config: MaskingConfig | None = None) -> str:
    """Restore every known token in ``text``."""
    return vault.token_format.pattern.sub(_restorer(vault, config), text)


def _split_pending(text: str, vault: Vault) -> int:
    """Index where the withheld suffix starts (``len(text)`` if none)."""
    fmt = vault.token_format
    for i in range(max(0, len(text) - fmt.max_length + 1), len(text)):
        if fmt.could_be_prefix(text[i:]):
            return i
    return len(text)


def unmask_stream_chunk(
    buffer: str,
    new_text: str,
    vault: Vault,
    config: MaskingConfig | None = None,
) -> StreamChunkResult:
    """Unmask one streamed chunk of PII-masked text."""
    text = buffer + new_text
    cut = _split_pending(text, vault)
    return StreamChunkResult(
        output=unmask_text(text[:cut], vault, config),
        remaining_buffer=text[cut:],
    )


def flush_stream_buffer(buffer: str, vault: Vault, config: MaskingConfig | None = None) -> str:
    """Resolve whatever is left at end of stream."""
    return unmask_text(buffer, vault, config)


def unredact_stream_chunk(buffer: str, new_text: str, vault: Vault) -> StreamChunkResult:
    """Unredact one streamed chunk of secret-redacted text."""
    return unmask_stream_chunk(buffer, new_text, vault)


def flush_redaction_buffer(buffer: str, vault: Vault) -> str:
    return unmask_text(buffer, vault)
