import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from api.schemas.compare import ComparisonRequestModel, ConnectionRequest, ConnectionResponse
from envdrift.config import load_settings
from envdrift.connections import ConnectionRegistry
from envdrift.errors import ConnectionNotFoundError, InvalidRequestError
from envdrift.models import ComparisonRequest, ComparisonResult
from envdrift.orchestrator import ComparisonOrchestrator
from envdrift.reporting import render_markdown

router = APIRouter(prefix="/api", tags=["api"])
logger = logging.getLogger(__name__)

settings = load_settings()
registry = ConnectionRegistry(ttl=timedelta(minutes=settings.connection_ttl_minutes))


def get_registry() -> ConnectionRegistry:
    return registry


def get_orchestrator(registry: ConnectionRegistry = Depends(get_registry)) -> ComparisonOrchestrator:
    return ComparisonOrchestrator(registry, settings=settings)


@router.post("/connections", response_model=ConnectionResponse, response_model_by_alias=True)
def create_connection(payload: ConnectionRequest, registry: ConnectionRegistry = Depends(get_registry)):
    ctx = registry.create(
        host=payload.host,
        port=payload.port,
        database=payload.database,
        username=payload.username,
        password=payload.password,
        ssl_mode=payload.ssl_mode,
        schema=payload.schema_name,
    )
    return ConnectionResponse(connection_id=ctx.id, schema_name=ctx.schema)


@router.delete("/connections/{connection_id}")
def delete_connection(connection_id: str, registry: ConnectionRegistry = Depends(get_registry)):
    if not registry.delete(connection_id):
        raise HTTPException(status_code=404, detail=f"Connection not found: {connection_id}")
    logger.info("Connection %s removed", connection_id)
    return {"status": "ok", "connectionId": connection_id}


def _run(payload: ComparisonRequestModel, orchestrator: ComparisonOrchestrator) -> ComparisonResult:
    request = ComparisonRequest(
        source_connection_id=payload.source_connection_id,
        target_connection_id=payload.target_connection_id,
        source_environment_name=payload.source_environment_name,
        target_environment_name=payload.target_environment_name,
        schema=payload.schema_name,
        specific_tables=payload.specific_tables,
    )
    try:
        return orchestrator.compare(request)
    except ConnectionNotFoundError as exc:
        logger.warning("Comparison rejected: %s", exc)
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidRequestError as exc:
        logger.warning("Comparison rejected: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception:
        logger.exception("Comparison failed")
        raise HTTPException(status_code=500, detail="Comparison failed. Check logs.")


@router.post("/environments/compare")
def compare_environments(payload: ComparisonRequestModel,
                         orchestrator: ComparisonOrchestrator = Depends(get_orchestrator)):
    logger.info(
        "API compare requested: %s -> %s (schema=%s)",
        payload.source_connection_id,
        payload.target_connection_id,
        payload.schema_name,
    )
    return _run(payload, orchestrator).to_dict()


@router.post("/environments/compare/export", response_class=PlainTextResponse)
def export_comparison(payload: ComparisonRequestModel,
                      orchestrator: ComparisonOrchestrator = Depends(get_orchestrator)):
    result = _run(payload, orchestrator)
    return PlainTextResponse(render_markdown(result), media_type="text/markdown")
