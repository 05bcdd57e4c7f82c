"""Shared FastAPI dependencies: tenant identity and the process-wide pipeline."""
from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException

from config import settings
from core.conversation import ConversationStore
from core.db_connector import create_readonly_engine
from core.executor import QueryExecutor
from core.pipeline import QueryPipeline
from core.rate_limiter import RateLimiter, create_rate_limit_store
from core.schema_context import SchemaContextBuilder
from core.translator import QueryTranslator
from integrations.ollama_client import OllamaClient
from models.chat import TenantContext


def get_tenant(
    x_store_id: Optional[str] = Header(None),
    x_store_plan: Optional[str] = Header(None),
) -> TenantContext:
    """The upstream auth layer sets these headers after authenticating the store."""
    if not x_store_id or not x_store_id.strip():
        raise HTTPException(status_code=401, detail="Missing store identity")
    return TenantContext(store_id=x_store_id.strip(), plan=x_store_plan)


@lru_cache(maxsize=1)
def get_ollama_client() -> OllamaClient:
    return OllamaClient()


@lru_cache(maxsize=1)
def get_pipeline() -> QueryPipeline:
    engine = create_readonly_engine(settings.DATABASE_READONLY_URL)
    return QueryPipeline(
        rate_limiter=RateLimiter(
            store=create_rate_limit_store(settings.REDIS_URL),
            tiers=settings.rate_limit_tier_map,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            default_plan=settings.RATE_LIMIT_DEFAULT_PLAN,
        ),
        schema_builder=SchemaContextBuilder(engine, ttl_seconds=settings.SCHEMA_CACHE_TTL_SECONDS),
        translator=QueryTranslator(
            get_ollama_client(),
            max_output_chars=settings.MAX_MODEL_OUTPUT_CHARS,
            history_turns=settings.HISTORY_TURNS,
        ),
        executor=QueryExecutor(engine, timeout_ms=settings.QUERY_TIMEOUT_MS, row_cap=settings.QUERY_ROW_CAP),
        conversations=ConversationStore(),
        row_cap=settings.QUERY_ROW_CAP,
        expose_sql=not settings.is_production,
    )
