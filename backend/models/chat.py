"""Pydantic schemas for the chat API and conversation history."""
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_serializer

from models.chart import ChartConfig, ChartTarget
from models.query import ChartIntent, Row

MAX_QUESTION_CHARS = 2000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantContext(BaseModel):
    """Authenticated tenant, supplied by the upstream auth layer."""
    model_config = ConfigDict(frozen=True)

    store_id: str = Field(..., min_length=1)
    plan: Optional[str] = None


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=1, max_length=MAX_QUESTION_CHARS)
    conversation_id: Optional[str] = Field(None, alias="conversationId")

    @field_validator("question")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("question must not be blank")
        return v.strip()


class ChartPayload(BaseModel):
    config: ChartConfig

    @field_serializer("config")
    def _dump_config(self, config) -> dict[str, Any]:
        return config.model_dump(mode="json", by_alias=True, exclude_none=True)


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: str
    chart: Optional[ChartPayload] = None
    data: list[Row] = []
    sql: Optional[str] = None               # populated outside production only
    conversation_id: str = Field(..., alias="conversationId")

    @model_serializer(mode="wrap")
    def _omit_hidden_sql(self, handler):
        data = handler(self)
        if self.sql is None:
            data.pop("sql", None)
        return data


class ChartConvertRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    config: ChartConfig
    target_type: ChartTarget = Field(..., alias="targetType")
    rows: Optional[list[Row]] = None
    intent: Optional[ChartIntent] = None


# ── Conversation history ──────────────────────────────────────────────────────

class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "error"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    attached_data: Optional[dict[str, Any]] = None   # {"chart": ..., "rows": ...}


class Conversation(BaseModel):
    id: str
    store_id: str
    turns: list[ConversationTurn] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
