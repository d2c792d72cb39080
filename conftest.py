"""
Shared fixtures: a fake Canvas API served over real HTTP.

FakeCanvas is a small aiohttp.web application. Tests program it per path
(paged lists with Link headers, single objects, failures, raw headers) and
inspect the requests it received afterwards.
"""

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from dashboard.config import CanvasConfig
from services.canvas_client import CanvasClient


class FakeCanvas:
    def __init__(self):
        self.routes: Dict[str, Dict[str, Any]] = {}
        self.requests: List[web.Request] = []
        self.base_url = ""
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    # ------------------------------------------------------------------
    # Programming
    # ------------------------------------------------------------------
    def pages(self, path: str, *pages: List[Any], fail_page: Optional[int] = None, status: int = 500):
        """Serve `pages` one per request, linking each to the next with ?page=n."""
        self.routes[path] = {
            "kind": "pages",
            "pages": list(pages),
            "fail_page": fail_page,
            "status": status,
        }

    def items(self, path: str, items: List[Any]):
        self.pages(path, items)

    def json(self, path: str, body: Any, headers: Optional[Dict[str, str]] = None):
        self.routes[path] = {"kind": "json", "body": body, "headers": headers or {}}

    def fail(self, path: str, status: int, text: str = "upstream failure"):
        self.routes[path] = {"kind": "fail", "status": status, "text": text}

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    def requests_for(self, path: str) -> List[web.Request]:
        return [r for r in self.requests if r.path == path]

    def request_count(self, path: str) -> int:
        return len(self.requests_for(path))

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------
    def _next_link(self, request: web.Request, page: int) -> str:
        query = [(k, v) for k, v in request.query.items() if k not in ("_", "page")]
        query.append(("page", str(page)))
        return f'<{self.base_url}{request.path}?{urlencode(query)}>; rel="next"'

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self._respond(request)
        finally:
            self.in_flight -= 1

    def _respond(self, request: web.Request) -> web.Response:
        route = self.routes.get(request.path)
        if route is None:
            return web.json_response({"errors": [{"message": "not found"}]}, status=404)

        if route["kind"] == "fail":
            return web.Response(status=route["status"], text=route["text"])

        if route["kind"] == "json":
            return web.json_response(route["body"], headers=route["headers"])

        page = int(request.query.get("page", "1"))
        if route["fail_page"] == page:
            return web.Response(status=route["status"], text=f"page {page} failed")
        pages = route["pages"]
        body = pages[page - 1] if page <= len(pages) else []
        headers = {}
        if page < len(pages):
            headers["Link"] = self._next_link(request, page + 1)
        return web.json_response(body, headers=headers)

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("GET", "/{tail:.*}", self.handle)
        return app


@pytest_asyncio.fixture
async def canvas():
    fake = FakeCanvas()
    async with TestServer(fake.make_app()) as server:
        fake.base_url = f"http://{server.host}:{server.port}"
        yield fake


@pytest.fixture
def config(canvas: FakeCanvas) -> CanvasConfig:
    return CanvasConfig(
        base_url=canvas.base_url,
        api_key="test-token",
        current_term_course_ids=[1, 2],
    )


@pytest_asyncio.fixture
async def client(config: CanvasConfig):
    async with CanvasClient(config) as client:
        yield client
