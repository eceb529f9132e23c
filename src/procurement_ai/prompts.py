from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any


class DraftType(str, Enum):
    VENDOR = "vendor"
    INTERNAL = "internal"


DRAFT_INSTRUCTIONS = {
    DraftType.VENDOR: (
        "Generate a professional, external-facing email response to the vendor. "
        "Be courteous and business-appropriate."
    ),
    DraftType.INTERNAL: (
        "Generate an internal email response for managers/team. "
        "Include sensitive context and internal considerations."
    ),
}

ANALYSIS_SCHEMA = """{
  "thread_summary": ["bullet point 1", "bullet point 2", ...],
  "related_conversations": {
    "internal": [{"summary": "key facts from thread"}],
    "external": [{"summary": "key facts from thread"}]
  },
  "missing_information": [
    {"field": "pricing", "description": "what's missing"},
    {"field": "delivery_date", "description": "what's missing"}
  ],
  "context": {
    "supplier_performance": "rating or metric",
    "negotiation_leverage": "assessment",
    "historical_data": "relevant history"
  }
}"""


def _as_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def build_analysis_prompt(
    *,
    subject: str,
    body: str,
    sender: str,
    po_number: str | None,
    related_internal: Sequence[Mapping[str, Any]],
    related_external: Sequence[Mapping[str, Any]],
) -> str:
    return f"""Analyze this procurement email and provide structured intelligence:

Email Subject: {subject}
Email Body: {body}
Sender: {sender}
PO Number: {po_number or 'Not found'}

Related Internal Threads: {_as_json(list(related_internal))}
Related External Threads: {_as_json(list(related_external))}

Provide a JSON response with the following structure:
{ANALYSIS_SCHEMA}

Focus on: commitments, dates, pricing, issues, approvals needed."""


def build_draft_prompt(
    *,
    subject: str,
    body: str,
    draft_type: DraftType,
    analysis: Mapping[str, Any] | None,
) -> str:
    analysis = analysis or {}
    return f"""Generate an email draft response:

Original Email:
Subject: {subject}
Body: {body}

Context: {DRAFT_INSTRUCTIONS[DraftType(draft_type)]}

Analysis Summary: {_as_json(analysis.get('thread_summary', []))}
Missing Information: {_as_json(analysis.get('missing_information', []))}

Generate a complete email draft that addresses the key points and missing information."""
