import logging
from dataclasses import dataclass
from typing import Mapping, Tuple

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from frontdoor.proxy.route import forward_to_target
from frontdoor.static.route import StaticSite
from frontdoor.upstream import UpstreamTarget

logger = logging.getLogger("uvicorn.error")

@dataclass(frozen=True)
class RouteDecision:
    is_proxy_target: bool
    is_index_request: bool
    file_path: str


def is_index_request(path: str) -> bool:
    """True for directory paths ("/", "/foo/") and explicit index.html documents."""
    last_segment = path.split("/")[-1]
    return last_segment == "" or path.endswith("index.html")


def escapes_root(path: str) -> bool:
    """True if ".." segments in ``path`` climb above the first segment."""
    depth = 0
    for segment in path.split("/"):
        if segment == "..":
            depth -= 1
            if depth < 0:
                return True
        elif segment not in ("", "."):
            depth += 1
    return False


def classify(path: str, root: str, proxy_prefix: str) -> RouteDecision:
    if path.startswith(proxy_prefix):
        return RouteDecision(is_proxy_target=True, is_index_request=False, file_path="")

    return RouteDecision(
        is_proxy_target=False,
        is_index_request=is_index_request(path),
        file_path=root + path,
    )


class RequestRouter:
    """
    Dispatches every request either to the upstream proxy or to the static site.

    All collaborators are fixed when the router is built and are only read
    while handling requests.
    """

    def __init__(
        self,
        *,
        site: StaticSite,
        upstream: UpstreamTarget,
        client: httpx.AsyncClient,
        header_overrides: Mapping[str, str],
        proxy_prefix: str,
    ):
        self.site = site
        self.upstream = upstream
        self.client = client
        self.header_overrides = dict(header_overrides)
        self.proxy_prefix = proxy_prefix

    @property
    def entrypoints(self) -> Tuple[str, ...]:
        return self.site.entrypoints

    def classify(self, path: str) -> RouteDecision:
        return classify(path, self.site.directory, self.proxy_prefix)

    async def handle(self, request: Request) -> Response:
        path = request.url.path
        decision = self.classify(path)

        if decision.is_proxy_target:
            return await forward_to_target(
                request, self.client, self.upstream, self.header_overrides
            )

        if escapes_root(path):
            logger.warning(f"Rejected path escaping the static root: {path}")
            raise HTTPException(status_code=400, detail="Invalid URL path")

        return await self.site.serve(request, decision.is_index_request)

    def as_api_router(self) -> APIRouter:
        router = APIRouter()
        # No method list, so every method reaches the proxy; StaticFiles answers 405 itself
        router.add_route("/{path:path}", self.handle, include_in_schema=False)
        return router
