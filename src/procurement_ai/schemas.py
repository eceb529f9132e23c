from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .prompts import DraftType


class EmailData(BaseModel):
    """Thread contents as scraped by the extension's content script."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    thread_id: str | None = Field(default=None, alias="threadId")
    subject: str = ""
    body: str = ""
    sender: str = ""
    recipients: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    timestamp: str | None = None

    @field_validator("subject", "body", "sender", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class RelatedThread(BaseModel):
    thread_id: str = ""
    subject: str = ""
    sender: str = ""
    timestamp: str = ""


class RelatedThreads(BaseModel):
    internal: list[RelatedThread] = Field(default_factory=list)
    external: list[RelatedThread] = Field(default_factory=list)


class ConversationSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: str = ""


class RelatedConversations(BaseModel):
    internal: list[ConversationSummary] = Field(default_factory=list)
    external: list[ConversationSummary] = Field(default_factory=list)


class MissingInformation(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: str = ""
    description: str = ""


class ThreadAnalysis(BaseModel):
    """Analysis reply; tolerant of extra keys the model adds."""

    model_config = ConfigDict(extra="allow")

    thread_summary: list[str] = Field(default_factory=list)
    related_conversations: RelatedConversations = Field(default_factory=RelatedConversations)
    missing_information: list[MissingInformation] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("thread_summary", mode="before")
    @classmethod
    def _coerce_summary(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if isinstance(v, list):
            return [item if isinstance(item, str) else str(item) for item in v]
        return v


class AnalyzeThreadRequest(BaseModel):
    email_data: EmailData
    user_id: str = Field(min_length=1)


class GenerateDraftRequest(BaseModel):
    email_data: EmailData
    draft_type: DraftType
    analysis: dict[str, Any] | None = None
    user_id: str | None = None


class DraftResponse(BaseModel):
    draft: str


class ErrorResponse(BaseModel):
    error: str


def make_error_response(message: str) -> ErrorResponse:
    return ErrorResponse(error=message)
