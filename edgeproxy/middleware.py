import logging

from fastapi import Request
from fastapi.responses import PlainTextResponse

logger = logging.getLogger("uvicorn.error")


class HostFilterMiddleware:
    """
    Answer 403 for requests whose Host header is not in ``allowed_hosts``.

    Mirrors the load balancer listener rule in front of the proxy. Settings
    are read from ``app.state`` on every request, so they must be in place
    once the lifespan has started.
    """
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)
        settings = request.app.state.settings
        host = (request.url.hostname or "").lower()

        if settings.allowed_hosts and host not in {h.lower() for h in settings.allowed_hosts}:
            logger.info("Rejected request for host %r", host)
            response = PlainTextResponse(settings.forbidden_body, status_code=403)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
