import logging
from typing import Callable, Iterable
from urllib.parse import unquote, urlsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask
import httpx
from tilerelay.core.config import Settings, settings

log = logging.getLogger(__name__)

router = APIRouter()

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

ClientFactory = Callable[[], httpx.AsyncClient]


def get_settings() -> Settings:
    return settings


def get_client_factory(cfg: Settings = Depends(get_settings)) -> ClientFactory:
    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=cfg.PROXY_TIMEOUT)
    return factory


def host_allowed(target: str, allowed: Iterable[str]) -> bool:
    """True when `allowed` is empty (open relay) or lists the target's host."""
    allowed = {h.lower() for h in allowed}
    if not allowed:
        return True
    host = urlsplit(target).hostname
    return host is not None and host.lower() in allowed


@router.get("/proxy")
async def proxy(
    request: Request,
    cfg: Settings = Depends(get_settings),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    # first value wins for repeated ?url=
    url = next(iter(request.query_params.getlist("url")), None)
    if not url:
        return PlainTextResponse("Missing url parameter", status_code=400)

    target = unquote(url)
    if not host_allowed(target, cfg.PROXY_ALLOWED_HOSTS):
        log.info("Rejected proxy target %s", target)
        return PlainTextResponse("Target host not allowed", status_code=403)

    client = client_factory()
    try:
        req = client.build_request("GET", target, headers={"User-Agent": cfg.PROXY_USER_AGENT})
        r = await client.send(req, stream=True)
    except Exception:
        await client.aclose()
        raise
    log.debug("Proxied %s -> %s", target, r.status_code)

    async def close() -> None:
        await r.aclose()
        await client.aclose()

    async def relay():
        try:
            async for chunk in r.aiter_raw():
                yield chunk
        finally:
            await close()

    # raw stream: upstream content-encoding/content-length stay valid
    # background close covers a body that is never iterated
    resp = StreamingResponse(relay(), status_code=r.status_code, background=BackgroundTask(close))
    for key, value in r.headers.multi_items():
        if key.lower() not in HOP_BY_HOP:
            resp.headers.append(key, value)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    return resp


async def upstream_error_handler(request: Request, exc: Exception) -> PlainTextResponse:
    log.error("Upstream request for %s failed: %r", request.url, exc)
    return PlainTextResponse(f"Upstream error: {exc}", status_code=502)
