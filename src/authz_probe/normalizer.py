"""
Response normalization for Authz Probe.

Masks volatile content (large numeric IDs, UUIDs, timestamp fields) so that
two responses for the same resource compare as equal even when they were
generated at different moments.
"""

import re

NUMBER_PLACEHOLDER = "<num>"
UUID_PLACEHOLDER = "<uuid>"
TIMESTAMP_PLACEHOLDER = "<ts>"

LONG_NUMBER_PATTERN = re.compile(r"\b\d{13,}\b")

UUID_PATTERN = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)

TIMESTAMP_FIELD_PATTERN = re.compile(
    r'"(created|updated|timestamp|ts|date)"\s*:\s*"[^"]+"',
    re.IGNORECASE,
)


def normalize(text: str) -> str:
    """Replace volatile values in `text` with fixed placeholders."""
    text = LONG_NUMBER_PATTERN.sub(NUMBER_PLACEHOLDER, text)
    text = UUID_PATTERN.sub(UUID_PLACEHOLDER, text)
    return TIMESTAMP_FIELD_PATTERN.sub(
        lambda m: f'"{m.group(1)}":"{TIMESTAMP_PLACEHOLDER}"',
        text,
    )
