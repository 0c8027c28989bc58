"""
Directive Extractor — fenced ACTION blocks inside generator output.

Wire format:

    ```ACTION:log_meal
    {"name": "Skyr", "calories": 130, ...}
    ```

The type keyword is matched case-insensitively. Blocks are independent and
returned in document order. Malformed JSON or failing payloads are logged and
dropped; nothing here raises.
"""

from __future__ import annotations

import json
import logging
import re

from actions.schemas import DIRECTIVE_SCHEMAS, validate_directive
from shared.models import Directive

logger = logging.getLogger(__name__)

ACTION_BLOCK_RE = re.compile(r"```ACTION:(\w+)\s*\n([\s\S]*?)```", re.IGNORECASE)


def _parse_block(match: re.Match[str]) -> Directive | None:
    directive_type = match.group(1).lower()
    if directive_type not in DIRECTIVE_SCHEMAS:
        logger.warning("Unknown directive type '%s' skipped", directive_type)
        return None

    try:
        payload = json.loads(match.group(2).strip())
    except json.JSONDecodeError as e:
        logger.warning("Malformed %s payload skipped: %s", directive_type, e)
        return None

    outcome = validate_directive(directive_type, payload)
    if not outcome.ok:
        logger.warning("Invalid %s payload skipped: %s", directive_type, "; ".join(outcome.errors))
        return None
    return Directive(type=directive_type, payload=outcome.payload, raw=match.group(0))


def extract_all(text: str) -> list[Directive]:
    """Every valid directive in document order."""
    directives: list[Directive] = []
    for match in ACTION_BLOCK_RE.finditer(text or ""):
        directive = _parse_block(match)
        if directive is not None:
            directives.append(directive)
    return directives


def extract_first(text: str) -> Directive | None:
    """The first valid directive, or None."""
    for match in ACTION_BLOCK_RE.finditer(text or ""):
        directive = _parse_block(match)
        if directive is not None:
            return directive
    return None


def strip(text: str, first_only: bool = False) -> str:
    """Remove directive blocks from display text and trim the result."""
    return ACTION_BLOCK_RE.sub("", text or "", count=1 if first_only else 0).strip()


def has_directive(text: str, directive_type: str | None = None) -> bool:
    for match in ACTION_BLOCK_RE.finditer(text or ""):
        if directive_type is None or match.group(1).lower() == directive_type:
            return True
    return False


_OPEN_FENCE = "```action"


def display_text(text: str) -> str:
    """
    Display text of a possibly incomplete streamed snapshot.

    Closed blocks are removed like `strip`; text from an ACTION fence that is
    still open (or a trailing partial fence) onward is held back.
    """
    cleaned = ACTION_BLOCK_RE.sub("", text or "")
    index = cleaned.find("```")
    while index >= 0:
        if _OPEN_FENCE.startswith(cleaned[index:index + len(_OPEN_FENCE)].lower()):
            cleaned = cleaned[:index]
            break
        index = cleaned.find("```", index + 3)
    return cleaned.strip()
