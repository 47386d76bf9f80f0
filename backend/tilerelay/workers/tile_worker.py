"""
Tile fetch worker.

Each inbound `{tileX, tileY}` message turns into exactly one request against
the proxy endpoint and exactly one outbound result message. Workers hold no
state besides their HTTP client, so concurrency comes from running many
`handle()` calls as independent asyncio tasks (see `fetch_tiles`).

Usage:
    async with TileWorker.from_settings() as worker:
        result = await worker.handle(TileRequest(tileX=1, tileY=2))
        async for result in fetch_tiles(worker, [(1, 2), (3, 4)]):
            ...
"""

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from tilerelay.core.config import Settings, configure_logging, settings
from tilerelay.workers.messages import TileFailure, TileRequest, TileResult, TileSuccess

log = logging.getLogger(__name__)

# characters JavaScript's encodeURIComponent leaves alone (besides alphanumerics)
URI_COMPONENT_SAFE = "-_.!~*'()"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

Coordinate = Union[TileRequest, Tuple[int, int]]


def percent_encode(value: str) -> str:
    return quote(value, safe=URI_COMPONENT_SAFE)


def tile_url(tile_x: int, tile_y: int, origin: str = settings.TILE_ORIGIN) -> str:
    return f"{origin.rstrip('/')}/{tile_x}/{tile_y}.png"


def proxy_url(tile_x: int, tile_y: int, origin: str = settings.TILE_ORIGIN,
              api_prefix: str = settings.API_PREFIX) -> str:
    return f"{api_prefix}/proxy?url=" + percent_encode(tile_url(tile_x, tile_y, origin))


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class TileWorker:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        include_blob: bool = True,
        tile_origin: str = settings.TILE_ORIGIN,
        api_prefix: str = settings.API_PREFIX,
        owns_client: bool = False,
    ):
        """
        Params:
            client: AsyncClient whose base_url points at the proxy host
            include_blob: forward the tile bytes as `imageBlob` on success
            owns_client: close `client` when the worker is closed
        """
        self.client = client
        self.include_blob = include_blob
        self.tile_origin = tile_origin
        self.api_prefix = api_prefix
        self._owns_client = owns_client

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "TileWorker":
        cfg = cfg or settings
        client = httpx.AsyncClient(base_url=cfg.WORKER_PROXY_BASE_URL, timeout=cfg.PROXY_TIMEOUT)
        return cls(
            client,
            include_blob=cfg.WORKER_INCLUDE_BLOB,
            tile_origin=cfg.TILE_ORIGIN,
            api_prefix=cfg.API_PREFIX,
            owns_client=True,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "TileWorker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def handle(self, request: TileRequest) -> TileResult:
        """Fetch one tile through the proxy. Fetch errors become a TileFailure."""
        image_url = proxy_url(request.tile_x, request.tile_y, self.tile_origin, self.api_prefix)
        try:
            # status is not inspected: a relayed 404 is still a success
            r = await self.client.get(image_url)
            blob = r.content
        except Exception as e:
            log.warning("Tile %s,%s failed: %r", request.tile_x, request.tile_y, e)
            return TileFailure(tileX=request.tile_x, tileY=request.tile_y, error=error_message(e))

        return TileSuccess(
            tileX=request.tile_x,
            tileY=request.tile_y,
            imageUrl=image_url,
            imageBlob=blob if self.include_blob else None,
        )

    async def post(self, message: Union[TileRequest, Mapping[str, Any]]) -> Dict[str, Any]:
        """Answer one inbound message with one outbound message dict."""
        if isinstance(message, TileRequest):
            request = message
        else:
            try:
                request = TileRequest.model_validate(message)
            except ValidationError as e:
                log.warning("Unreadable tile message %r", message)
                fields = message if isinstance(message, Mapping) else {}
                return TileFailure(
                    tileX=_as_int(fields.get("tileX")),
                    tileY=_as_int(fields.get("tileY")),
                    error=error_message(e),
                ).to_message()
        result = await self.handle(request)
        return result.to_message()

    async def run(self, inbox: "asyncio.Queue", outbox: "asyncio.Queue") -> None:
        """Serve messages from `inbox` one at a time until cancelled."""
        while True:
            message = await inbox.get()
            try:
                await outbox.put(await self.post(message))
            finally:
                inbox.task_done()


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def fetch_tiles(worker: TileWorker, coordinates: Iterable[Coordinate]) -> AsyncIterator[TileResult]:
    """Fetch every coordinate concurrently, yielding results as they complete."""
    requests = [
        c if isinstance(c, TileRequest) else TileRequest(tileX=c[0], tileY=c[1])
        for c in coordinates
    ]
    tasks = [asyncio.ensure_future(worker.handle(r)) for r in requests]
    try:
        for next_done in asyncio.as_completed(tasks):
            yield await next_done
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _parse_coordinate(text: str) -> Tuple[int, int]:
    try:
        x, y = text.split(",")
        return int(x), int(y)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected X,Y, got {text!r}")


async def _download(coordinates, out_dir: Path, cfg: Settings) -> int:
    out_dir.mkdir(parents=True, exist_ok=True)
    failures = 0
    async with TileWorker.from_settings(cfg) as worker:
        worker.include_blob = True
        async for result in fetch_tiles(worker, coordinates):
            if isinstance(result, TileFailure):
                failures += 1
                log.error("Tile %s,%s: %s", result.tile_x, result.tile_y, result.error)
                continue
            blob = result.image_blob or b""
            # relayed error pages (404, 502 text) are successes to the worker
            if not blob.startswith(PNG_SIGNATURE):
                failures += 1
                log.error("Tile %s,%s: not a PNG (%r)", result.tile_x, result.tile_y, blob[:80])
                continue
            path = out_dir / f"{result.tile_x}_{result.tile_y}.png"
            path.write_bytes(blob)
            log.info("Saved %s (%d bytes)", path, len(blob))
    return failures


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Fetch wplace tiles through the tile proxy.")
    parser.add_argument("tiles", nargs="+", type=_parse_coordinate, metavar="X,Y")
    parser.add_argument("--out", type=Path, default=Path("tiles"))
    parser.add_argument("--base-url", default=settings.WORKER_PROXY_BASE_URL,
                        help="host serving the proxy endpoint")
    args = parser.parse_args(argv)

    configure_logging()
    cfg = settings.model_copy(update={"WORKER_PROXY_BASE_URL": args.base_url})
    failures = asyncio.run(_download(args.tiles, args.out, cfg))
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
