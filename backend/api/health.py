"""GET /api/health — model server and read-only database check."""
import logging

from fastapi import APIRouter, Depends

from api.deps import get_ollama_client, get_pipeline
from core.db_connector import ping
from core.pipeline import QueryPipeline
from integrations.ollama_client import OllamaClient

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health_check(
    ollama: OllamaClient = Depends(get_ollama_client),
    pipeline: QueryPipeline = Depends(get_pipeline),
):
    ollama_status = _check_ollama(ollama)
    db_status = _check_database(pipeline)
    overall = "ok" if ollama_status["status"] == "up" and db_status["status"] == "up" else "degraded"
    return {
        "status": overall,
        "services": {
            "ollama":   ollama_status,
            "database": db_status,
        },
    }


def _check_ollama(ollama: OllamaClient) -> dict:
    healthy, info = ollama.is_healthy()
    if healthy:
        return {"status": "up", "model": info}
    logger.warning("Ollama health check failed: %s", info)
    return {"status": "down", "error": info}


def _check_database(pipeline: QueryPipeline) -> dict:
    try:
        ping(pipeline.executor.engine)
        return {"status": "up", "dialect": pipeline.executor.engine.dialect.name}
    except ValueError as e:
        logger.warning("Database health check failed: %s", e)
        return {"status": "down", "error": str(e)}
