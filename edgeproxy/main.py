import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
import httpx
import uvicorn
from os import getenv
from .config import ConfigError, load_settings
from .error_pages import ErrorPages
from .middleware import HostFilterMiddleware
from .routing import find_route, forwarded_headers, response_headers, upstream_url

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown logic."""
    #---- Startup ----
    try:
        settings = load_settings()
    except ConfigError:
        logger.critical("Refusing to start with an invalid proxy configuration")
        raise

    for route in settings.routes:
        logger.info("Route %s %s %r -> %s", route.label, route.match, route.path_pattern, route.upstream)
    if settings.catch_all is None:
        logger.info("No catch-all route, unmatched paths are answered with 403")

    http_client = httpx.AsyncClient(follow_redirects=False)

    app.state.settings = settings
    app.state.error_pages = ErrorPages.load(settings.error_pages_dir)
    app.state.http_client = http_client

    try:
        yield
    finally:
        #---- Shutdown ----
        await http_client.aclose()

application = FastAPI(lifespan=lifespan)
application.add_middleware(HostFilterMiddleware)


@application.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error while proxying %s", request.url.path)
    return request.app.state.error_pages.response(500)


@application.api_route(
    path="/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
)
async def proxy(path: str, request: Request):
    state = request.app.state
    settings = state.settings
    # scope path is percent-decoded; request.url would re-split it on a decoded "?" or "#"
    path = request.scope["path"]
    query = request.scope.get("query_string", b"").decode("latin-1")

    if path in settings.local_pages:
        page = state.error_pages.serve(path)
        if page is not None:
            return page

    route = find_route(path, settings.routes)
    if route is None:
        logger.info("No route for %s %s", request.method, path)
        return PlainTextResponse(settings.forbidden_body, status_code=403)

    url = upstream_url(route, path)
    if query:
        url = f"{url}?{query}"

    headers = forwarded_headers(
        route,
        request.headers.items(),
        client_ip=request.client.host if request.client else None,
        scheme=request.url.scheme,
    )

    body = await request.body()

    # ---- Proxy Request ----
    try:
        resp = await state.http_client.request(
            request.method,
            url,
            headers=headers,
            content=body,
            timeout=route.timeouts.as_httpx(),
        )
    except httpx.TimeoutException as exc:
        logger.warning("Upstream timeout on route %s (%s): %r", route.label, url, exc)
        return state.error_pages.response(504)
    except httpx.RequestError as exc:
        logger.warning("Upstream error on route %s (%s): %r", route.label, url, exc)
        return state.error_pages.response(502)

    logger.info("%s %s -> %s [%s] %d", request.method, path, url, route.label, resp.status_code)

    response = Response(content=resp.content, status_code=resp.status_code)
    for name, value in response_headers(route, resp.headers.multi_items()):
        response.headers.append(name, value)
    if request.method == "HEAD" and "content-length" in resp.headers and "content-encoding" not in resp.headers:
        response.headers["content-length"] = resp.headers["content-length"]
    return response


def run():
    uvicorn.run(
        application,
        host=getenv("PROXY_HOST", "0.0.0.0"),
        port=int(getenv("PROXY_PORT", "80")),
        log_level=getenv("LOG_LEVEL", "info").lower(),
    )
