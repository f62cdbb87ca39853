"""
Auto-link Normalizer.

Expands the parameter-reference macro ``{[segment|display|...]}`` that
Jira/Xray embeds into imported step text, keeping the display segment.
"""

from __future__ import annotations

import re

from loguru import logger


AUTO_LINK_PATTERN = re.compile(r"\{\[([^\]]*)\]\}")
MIN_MACRO_LENGTH = len("{[]}")


def normalize_auto_link(text: str) -> str:
    """
    Replace every auto-link macro in ``text`` with its second segment.

    A macro without a pipe separator cannot be resolved: it is replaced by
    its raw inner value and normalization stops there. A nested macro may
    leave such a single-segment macro behind, which the next pass unwraps
    the same way. Every pass shortens the text and the pass count is
    bounded by its length, so malformed input always terminates.

    Args:
        text: Step text as imported from the tracker.

    Returns:
        Normalized text; unchanged when no macro is present.

    Examples:
        >>> normalize_auto_link("go to {[Carson|Resolved Name]}")
        'go to Resolved Name'
        >>> normalize_auto_link("{[a|{[b|c]}]}")
        'b'
    """
    if not text:
        return text

    max_passes = len(text) // MIN_MACRO_LENGTH + 1

    for _ in range(max_passes):
        match = AUTO_LINK_PATTERN.search(text)
        if match is None:
            return text

        value = match.group(1)
        segments = value.split("|")
        if len(segments) <= 1:
            return text[:match.start()] + value + text[match.end():]

        text = text[:match.start()] + segments[1] + text[match.end():]

    logger.warning(f"Auto-link normalization stopped after {max_passes} passes: {text!r}")
    return text
