"""
HTTP transport for the model catalog.

Routes (all under the configured API prefix, default /api/ai):
- GET    /metadata                    compiled bundle (?section=, ?refresh=)
- GET    /models/{entity}             generic operation, defaults to list
- POST   /models/{entity}             generic operation, defaults to create
- GET    /models/{entity}/search      search
- GET    /models/{entity}/{id}        show
- PUT    /models/{entity}/{id}        update
- DELETE /models/{entity}/{id}        delete
- POST   /cache/clear                 clear schema and/or metadata caches
- /healthz: health check endpoint (outside the prefix)

Every route answers with the dispatcher's envelope; the HTTP status is derived
from the envelope's error code. Authentication and rate limiting are left to
the deployment in front of this app.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from starlette.status import HTTP_201_CREATED, HTTP_500_INTERNAL_SERVER_ERROR
import uvicorn

from config import CatalogConfig, DatabaseConfig
from container import CatalogContainer
from database import DatabaseConnection
from errors import CatalogDisabledError, CatalogError, status_for
from handlers.catalog_handlers import clear_cache_envelope, metadata_envelope, parse_cache_names

logger = logging.getLogger(__name__)


class OperationRequest(BaseModel):
    """Operation payload; any field besides `operation` is passed through."""
    model_config = ConfigDict(extra="allow")

    operation: Optional[str] = None


class CacheClearRequest(BaseModel):
    caches: List[str] = []


def _container(request: Request) -> CatalogContainer:
    return request.app.state.container


def require_enabled(request: Request):
    if not _container(request).config.enabled:
        raise CatalogDisabledError("AI assistant is disabled")


def _query_payload(request: Request) -> Dict[str, Any]:
    """Query string to payload; repeated keys become lists."""
    payload: Dict[str, Any] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        payload[key] = values if len(values) > 1 else values[0]
    return payload


async def _respond(request: Request, entity: str, operation: str, payload: Dict[str, Any]) -> JSONResponse:
    envelope = await _container(request).dispatch(entity, operation, payload)
    status = status_for(envelope)
    if envelope.get("success") and operation == "create":
        status = HTTP_201_CREATED
    return JSONResponse(status_code=status, content=envelope)


def build_router(prefix: str) -> APIRouter:
    router = APIRouter(prefix=prefix.rstrip("/"), dependencies=[Depends(require_enabled)])

    @router.get("/metadata")
    async def get_metadata(request: Request, section: Optional[str] = None, refresh: bool = False):
        envelope = await metadata_envelope(_container(request), section=section, refresh=refresh)
        return JSONResponse(content=envelope)

    @router.post("/cache/clear")
    async def clear_cache(request: Request, body: Optional[CacheClearRequest] = None):
        names = parse_cache_names(body.caches if body else [])
        return JSONResponse(content=clear_cache_envelope(_container(request), names))

    @router.get("/models/{entity}/search")
    async def search_records(request: Request, entity: str):
        return await _respond(request, entity, "search", _query_payload(request))

    @router.get("/models/{entity}")
    async def list_records(request: Request, entity: str):
        payload = _query_payload(request)
        operation = payload.pop("operation", None) or "list"
        return await _respond(request, entity, operation, payload)

    @router.post("/models/{entity}")
    async def entity_operation(request: Request, entity: str, body: Optional[OperationRequest] = None):
        payload = body.model_dump() if body else {}
        operation = payload.pop("operation", None) or "create"
        return await _respond(request, entity, operation, payload)

    @router.get("/models/{entity}/{record_id}")
    async def show_record(request: Request, entity: str, record_id: str):
        payload = _query_payload(request)
        payload["id"] = record_id
        return await _respond(request, entity, "show", payload)

    @router.put("/models/{entity}/{record_id}")
    async def update_record(request: Request, entity: str, record_id: str, body: Optional[OperationRequest] = None):
        payload = body.model_dump() if body else {}
        payload.pop("operation", None)
        payload["id"] = record_id
        return await _respond(request, entity, "update", payload)

    @router.delete("/models/{entity}/{record_id}")
    async def delete_record(request: Request, entity: str, record_id: str):
        return await _respond(request, entity, "delete", {"id": record_id})

    return router


def create_app(catalog: CatalogContainer) -> FastAPI:
    """Build the FastAPI app around an initialized container."""
    app = FastAPI(title="Model Catalog MCP Server")
    app.state.container = catalog

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(CatalogError)
    async def catalog_error_handler(request: Request, exc: CatalogError):
        return JSONResponse(status_code=exc.status, content=exc.to_envelope())

    @app.get("/healthz")
    async def health_check(request: Request):
        """Health check endpoint (outside the API prefix)"""
        db = _container(request).db
        try:
            if await db.check_connection():
                return JSONResponse(content={
                    "status": "healthy",
                    "database": "connected",
                    "pool": await db.get_pool_stats(),
                })
            return JSONResponse(
                status_code=HTTP_500_INTERNAL_SERVER_ERROR,
                content={"status": "unhealthy", "error": "Database not connected"}
            )
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=HTTP_500_INTERNAL_SERVER_ERROR,
                content={"status": "unhealthy", "error": str(e)}
            )

    app.include_router(build_router(catalog.config.api_prefix))
    return app


def run_http_server(host: str = "127.0.0.1", port: int = 3333):
    """
    Run the catalog over HTTP.

    Args:
        host: Host to bind to
        port: Port to listen on
    """
    catalog_config = CatalogConfig.from_environment()
    db = DatabaseConnection(DatabaseConfig.from_environment())
    app = create_app(CatalogContainer(db, catalog_config))

    @app.on_event("startup")
    async def startup_event():
        await db.connect()
        logger.info(f"Model Catalog (HTTP) starting on http://{host}:{port}{catalog_config.api_prefix}")

    @app.on_event("shutdown")
    async def shutdown_event():
        await db.disconnect()
        logger.info("Database connection closed")

    uvicorn.run(app, host=host, port=port, log_level="info")
