"""Request pipeline stages wrapped around every route and static file."""

import time
import zlib
from collections.abc import Iterable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from website_server.exceptions import HTTPError
from website_server.web.cache import ResponseCache

logger = structlog.get_logger()

CACHEABLE_METHODS = ("GET", "HEAD")


async def _read_body(response: Response) -> bytes:
    """Drain a streamed response returned by ``call_next``."""
    chunks = [chunk async for chunk in response.body_iterator]  # type: ignore[attr-defined]
    return b"".join(c if isinstance(c, bytes) else c.encode() for c in chunks)


def _buffered_response(status_code: int, raw_headers: Iterable[tuple[bytes, bytes]], body: bytes) -> Response:
    response = Response(content=body, status_code=status_code)
    response.raw_headers = list(raw_headers)
    return response


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Translate errors escaping the pipeline into responses.

    Not-found errors and 404 responses redirect to the configured target, as
    do 405 responses for paths no contact route is bound to; :class:`HTTPError`
    keeps its own status; anything else becomes a 500.
    """

    def __init__(self, app: ASGIApp, not_found: str = "", route_paths: Iterable[str] = ()) -> None:
        super().__init__(app)
        self.not_found = not_found
        self.route_paths = frozenset(route_paths)

    def _redirect_not_found(self, request: Request, fallback: Response) -> Response:
        if not self.not_found or request.url.path == self.not_found:
            return fallback
        return RedirectResponse(self.not_found, status_code=302)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            response = await call_next(request)
        except HTTPError as exc:
            error_response = PlainTextResponse(exc.message, status_code=exc.status_code)
            if exc.status_code == 404:
                return self._redirect_not_found(request, error_response)
            return error_response
        except Exception:
            # Already logged with its traceback by RequestLoggingMiddleware.
            return PlainTextResponse("Internal Server Error", status_code=500)

        if response.status_code == 405 and request.url.path not in self.route_paths:
            # The static mount answers every path, so unknown paths surface as 405.
            return self._redirect_not_found(request, PlainTextResponse("Not Found", status_code=404))
        if response.status_code == 405:
            allow = {"Allow": response.headers["allow"]} if "allow" in response.headers else None
            return PlainTextResponse("Method Not Allowed", status_code=405, headers=allow)
        if response.status_code == 404:
            return self._redirect_not_found(request, PlainTextResponse("Not Found", status_code=404))
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log client address, method, status, duration (ms) and path of every request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except HTTPError as exc:
            logger.error(
                request.url.path,
                ip=_client_ip(request),
                met=request.method,
                sta=exc.status_code,
                dur=int((time.perf_counter() - start) * 1000),
                error=exc.message,
            )
            raise
        except Exception as exc:
            logger.error(
                request.url.path,
                ip=_client_ip(request),
                met=request.method,
                sta=500,
                dur=int((time.perf_counter() - start) * 1000),
                error=str(exc),
                exc_info=True,
            )
            raise

        logger.info(
            request.url.path,
            ip=_client_ip(request),
            met=request.method,
            sta=response.status_code,
            dur=int((time.perf_counter() - start) * 1000),
        )
        return response


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve and store complete GET/HEAD responses.

    Requests with ``noCache=true`` in the query string skip the cache.
    """

    def __init__(self, app: ASGIApp, cache: ResponseCache, cache_control: bool = False) -> None:
        super().__init__(app)
        self.cache = cache
        self.cache_control = cache_control

    @staticmethod
    def cache_key(request: Request) -> str:
        # Compressed and plain bodies are stored separately.
        encoding = "gzip" if "gzip" in request.headers.get("accept-encoding", "") else "identity"
        return f"{request.method}:{request.url.path}:{encoding}"

    def _finalize(self, response: Response, state: str, max_age: float) -> Response:
        response.headers["X-Cache"] = state
        if self.cache_control:
            response.headers["Cache-Control"] = f"public, max-age={max(int(max_age), 0)}"
        return response

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method not in CACHEABLE_METHODS or request.query_params.get("noCache") == "true":
            return await call_next(request)

        key = self.cache_key(request)
        entry = self.cache.get(key)
        if entry is not None:
            response = _buffered_response(entry.status_code, entry.headers, entry.body)
            return self._finalize(response, "hit", entry.expires_at - time.monotonic())

        response = await call_next(request)
        if response.status_code != 200:
            return response

        body = await _read_body(response)
        self.cache.set(key, response.status_code, list(response.raw_headers), body)
        response = _buffered_response(response.status_code, response.raw_headers, body)
        return self._finalize(response, "miss", self.cache.ttl)


def _etag_matches(if_none_match: str | None, etag: str) -> bool:
    if not if_none_match:
        return False
    if if_none_match.strip() == "*":
        return True
    bare = etag.removeprefix("W/")
    return any(candidate.strip().removeprefix("W/") == bare for candidate in if_none_match.split(","))


class WeakETagMiddleware(BaseHTTPMiddleware):
    """Tag GET/HEAD responses with a weak ETag and answer matching revalidations with 304.

    GET bodies are tagged ``W/"<len>-<crc32>"``, replacing any strong tag set
    by the inner app. HEAD responses carry no body, so an existing tag is only
    downgraded to weak.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if request.method not in CACHEABLE_METHODS or response.status_code != 200:
            return response

        if request.method == "GET":
            body = await _read_body(response)
            etag = f'W/"{len(body)}-{zlib.crc32(body):08x}"'
            response = _buffered_response(response.status_code, response.raw_headers, body)
        else:
            etag = response.headers.get("etag")
            if etag is None:
                return response
            if not etag.startswith("W/"):
                etag = f"W/{etag}"
        response.headers["ETag"] = etag

        if _etag_matches(request.headers.get("if-none-match"), etag):
            return Response(status_code=304, headers={"ETag": etag})
        return response
