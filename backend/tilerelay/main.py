import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import httpx
import uvicorn
from tilerelay.core.config import configure_logging, settings
from tilerelay.api.health import router as health_router
from tilerelay.api.proxy import router as proxy_router, upstream_error_handler

log = logging.getLogger(__name__)

def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(
        CORSMiddleware, allow_origins=["*"], allow_methods=["GET"], allow_headers=["*"]
    )

    # API
    app.include_router(health_router, prefix=settings.API_PREFIX, tags=["health"])
    app.include_router(proxy_router, prefix=settings.API_PREFIX, tags=["proxy"])

    # transport failures surface as 502
    app.add_exception_handler(httpx.HTTPError, upstream_error_handler)
    app.add_exception_handler(httpx.InvalidURL, upstream_error_handler)

    if not settings.PROXY_ALLOWED_HOSTS:
        log.warning("PROXY_ALLOWED_HOSTS is empty: %s/proxy is an open relay", settings.API_PREFIX)

    @app.get("/")
    async def root():
        return {"ok": True, "docs": "/docs"}

    return app

app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
