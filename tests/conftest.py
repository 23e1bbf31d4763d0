# Centralized pytest configuration file (fixtures, hooks, plugins, etc.)
import pytest
from asgi_lifespan import LifespanManager
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse
from httpx import AsyncClient, ASGITransport

from edgeproxy.config import default_settings
from edgeproxy.main import application as gateway_app


@pytest.fixture(autouse=True)
def no_config_file(monkeypatch):
    """Every test starts from the built-in route table."""
    monkeypatch.delenv('PROXY_CONFIG', raising=False)


@pytest.fixture
def proxy_settings():
    return default_settings()


@pytest.fixture
def upstream_app() -> FastAPI:
    app = FastAPI()     # mock upstream for every route, told apart by host

    @app.get('/career/moved')
    async def moved():  # absolute redirect into the rewritten space
        return RedirectResponse('https://jobs.bimeco.io/career/foo', status_code=302)

    @app.get('/career/relative')
    async def relative():
        return RedirectResponse('/career/bar', status_code=301)

    @app.get('/elsewhere')
    async def elsewhere():
        return RedirectResponse('https://example.org/career/x', status_code=302)

    @app.api_route(
        '/{path:path}',
        methods=['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS'],
    )
    async def echo(path: str, request: Request):  # tests path, host and header forwarding
        return {
            'server': request.scope['server'][0],
            'scheme': request.url.scheme,
            'path': request.scope['path'],
            'query': request.scope['query_string'].decode(),
            'method': request.method,
            'body': (await request.body()).decode(),
            'received_headers': dict(request.headers),
        }

    return app


@pytest.fixture
async def gateway_client(upstream_app: FastAPI, proxy_settings):
    """Gateway test client with upstreams mocked via ASGITransport"""
    # Transport to fake upstream
    upstream_transport = ASGITransport(app=upstream_app)
    upstream_client = AsyncClient(transport=upstream_transport)

    # Lifespan management to handle async testing with edgeproxy.main app
    async with LifespanManager(gateway_app):
        # Change state variables associated with real gateway app to tests variables
        gateway_app.state.settings = proxy_settings
        gateway_app.state.http_client = upstream_client

        # client with transport to gateway app, Host taken from base_url
        gateway_transport = ASGITransport(app=gateway_app)
        async with AsyncClient(
                transport=gateway_transport,
                base_url='https://www.bim.com.sg') as client:
            yield client

    await upstream_client.aclose()
