from __future__ import annotations

import re

# Ordered: the first pattern that matches wins.
PO_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"PO[#:\s-]?(\d{4,})", re.IGNORECASE),
    re.compile(r"Purchase\s+Order[#:\s-]?(\d{4,})", re.IGNORECASE),
    re.compile(r"P\.O\.\s*[#:\s-]?(\d{4,})", re.IGNORECASE),
    re.compile(r"(\d{4,}-\d{2,})"),
)


def extract_po_number(subject: str | None, body: str | None) -> str | None:
    """Return the first purchase-order number found in subject + body, if any."""
    text = f"{subject or ''} {body or ''}"
    for pattern in PO_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1) or match.group(0)
    return None
