"""
Chat endpoints.

POST /api/chat/query                    — answer a question with rows and a chart
GET  /api/chat/suggestions              — starter questions
GET  /api/chat/conversations/{id}       — the tenant's conversation history
POST /api/chat/chart/convert            — switch a chart to another type
"""
import asyncio
import logging
import threading

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from api.deps import get_pipeline, get_tenant
from core.chart_spec import convert_chart_type
from core.pipeline import DEFAULT_SUGGESTIONS, QueryPipeline
from models.chat import ChartConvertRequest, ChartPayload, ChatRequest, ChatResponse, Conversation, TenantContext

router = APIRouter()
logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5


async def _watch_disconnect(request: Request, cancel: threading.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling question")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/chat/query", response_model=ChatResponse)
async def ask_question(
    req: ChatRequest,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    pipeline: QueryPipeline = Depends(get_pipeline),
):
    cancel = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        return await run_in_threadpool(pipeline.ask, tenant, req.question, req.conversation_id, cancel)
    finally:
        watcher.cancel()


@router.get("/chat/suggestions")
def suggestions(tenant: TenantContext = Depends(get_tenant)):
    return {"suggestions": list(DEFAULT_SUGGESTIONS)}


@router.get("/chat/conversations/{conversation_id}", response_model=Conversation)
def get_conversation(
    conversation_id: str,
    tenant: TenantContext = Depends(get_tenant),
    pipeline: QueryPipeline = Depends(get_pipeline),
):
    conv = pipeline.conversations.get(tenant.store_id, conversation_id)
    if conv is None:
        raise HTTPException(status_code=404, detail=f"Conversation '{conversation_id}' not found.")
    return conv


@router.post("/chat/chart/convert", response_model=ChartPayload)
def convert_chart(req: ChartConvertRequest, tenant: TenantContext = Depends(get_tenant)):
    try:
        converted = convert_chart_type(req.config, req.target_type, rows=req.rows, intent=req.intent)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ChartPayload(config=converted)
