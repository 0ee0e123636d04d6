from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import ORJSONResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator

from mediavault.api.v1.deps import close_engine, get_engine, unwrap
from mediavault.api.v1.router import api_router
from mediavault.core.config import settings
from mediavault.core.logging import configure_logging
from mediavault.services import url_signer
from mediavault.services.engine import StorageEngine


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_engine()


app = FastAPI(
    title=settings.app_name,
    default_response_class=ORJSONResponse,
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(api_router, prefix=settings.api_prefix)

Instrumentator().instrument(app).expose(app)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/file/{file_id}/{variant}/{token}")
async def serve_signed_file(
    file_id: str,
    variant: str,
    token: str,
    engine: StorageEngine = Depends(get_engine),
) -> Response:
    if not url_signer.verify_token(file_id, variant, token, engine.settings.url_secret):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "File not found"})
    content = unwrap(await engine.retrieve_file(file_id, variant))
    return Response(
        content=content.data,
        media_type=content.mime_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
