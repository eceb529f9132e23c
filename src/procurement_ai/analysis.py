from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from .errors import InvalidResponseShape, truncate
from .po_number import extract_po_number
from .prompts import DraftType, build_analysis_prompt, build_draft_prompt
from .schemas import EmailData, ThreadAnalysis
from .storage import AnalysisCache, ThreadStore

log = structlog.get_logger()

_BULLET_RE = re.compile(r"^(?:[-•*]\s+|\d+\.\s+)")


class Completer(Protocol):
    async def complete(self, prompt: str) -> str: ...


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Parse the span from the first `{` to the last `}`; None if that is not a JSON object."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start : end + 1])
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def extract_bullet_points(text: str) -> list[str]:
    """Best effort: lines starting with -, •, * or `N.` with the marker stripped."""
    points: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        match = _BULLET_RE.match(stripped)
        if not match:
            continue
        point = stripped[match.end() :].strip()
        if point:
            points.append(point)
    return points


def parse_analysis_reply(text: str, *, provider: str = "LLM") -> dict[str, Any]:
    if not text or not text.strip():
        raise InvalidResponseShape(provider, "empty analysis reply")

    data = extract_json_object(text)
    if data is None:
        log.warning("analysis_reply_not_json", excerpt=truncate(text))
        return ThreadAnalysis(thread_summary=extract_bullet_points(text)).model_dump()

    try:
        return ThreadAnalysis.model_validate(data).model_dump()
    except ValidationError as e:
        # Keep what the model said even if a section deviates from the schema.
        log.warning("analysis_reply_schema_mismatch", errors=e.error_count())
        for key, default in ThreadAnalysis().model_dump().items():
            data.setdefault(key, default)
        return data


class ThreadAssistant:
    """Analyze and draft over a completer. SQLite work runs in worker threads off the event loop."""

    def __init__(self, completion: Completer, store: ThreadStore, cache: AnalysisCache):
        self.completion = completion
        self.store = store
        self.cache = cache

    @property
    def _provider_name(self) -> str:
        provider = getattr(self.completion, "provider", None)
        return getattr(provider, "name", "LLM")

    async def analyze_thread(self, email: EmailData, user_id: str) -> dict[str, Any]:
        cacheable = bool(email.thread_id)
        if cacheable:
            cached = await asyncio.to_thread(self.cache.get, email.thread_id, user_id)
            if cached is not None:
                log.info("analysis_cache_hit", thread_id=email.thread_id)
                return cached

        po_number = extract_po_number(email.subject, email.body)
        related = await asyncio.to_thread(self.store.related_threads, po_number, user_id)
        prompt = build_analysis_prompt(
            subject=email.subject,
            body=email.body,
            sender=email.sender,
            po_number=po_number,
            related_internal=[t.model_dump() for t in related.internal],
            related_external=[t.model_dump() for t in related.external],
        )
        text = await self.completion.complete(prompt)
        analysis = parse_analysis_reply(text, provider=self._provider_name)

        if cacheable:
            await asyncio.to_thread(self.cache.put, email.thread_id, user_id, analysis)
        await asyncio.to_thread(self.store.store_email, email, po_number, user_id)
        log.info(
            "thread_analyzed",
            thread_id=email.thread_id,
            po_number=po_number,
            related_internal=len(related.internal),
            related_external=len(related.external),
        )
        return analysis

    async def generate_draft(
        self, email: EmailData, draft_type: DraftType, analysis: dict[str, Any] | None
    ) -> str:
        prompt = build_draft_prompt(
            subject=email.subject,
            body=email.body,
            draft_type=draft_type,
            analysis=analysis,
        )
        draft = await self.completion.complete(prompt)
        if not draft or not draft.strip():
            raise InvalidResponseShape(self._provider_name, "empty draft reply")
        return draft
