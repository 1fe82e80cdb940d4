"""
Static serving of the compiled frontend.

Files come from Starlette's ``StaticFiles`` in html mode, which provides
content-type guessing, ETag/Last-Modified handling with 304 answers,
``index.html`` for directories and 404 for anything missing.

Index documents additionally trigger HTTP/2 push promises for the build's
entrypoints when the ASGI server offers the ``http.response.push``
extension. Without it pushing is skipped.
"""

import asyncio
import logging
import posixpath
from typing import Iterable, Set, Tuple

from fastapi import Request
from fastapi.responses import Response
from starlette.staticfiles import StaticFiles

logger = logging.getLogger("uvicorn.error")

PUSH_EXTENSION = "http.response.push"


def supports_push(request: Request) -> bool:
    extensions = request.scope.get("extensions") or {}
    return PUSH_EXTENSION in extensions


async def push_entrypoint(request: Request, entrypoint: str, timeout: float) -> bool:
    try:
        await asyncio.wait_for(request.send_push_promise(entrypoint), timeout)
    except Exception as e:
        logger.warning(f"Push error for {entrypoint}: {e!r}")
        return False
    return True


async def push_entrypoints(
    request: Request, entrypoints: Iterable[str], timeout: float
) -> int:
    """
    Send a push promise for every entrypoint.

    Promises are issued concurrently, so the whole batch takes at most
    ``timeout`` seconds. Failures are logged and skipped so they never reach
    the primary response. Returns the number of promises that were sent.
    """
    if not supports_push(request):
        return 0

    results = await asyncio.gather(
        *(push_entrypoint(request, entrypoint, timeout) for entrypoint in entrypoints)
    )
    return sum(results)


def relative_file_path(path: str) -> str:
    """Map a URL path onto a path relative to the static root ("." for the root)."""
    return posixpath.normpath(path.lstrip("/") or ".")


class StaticSite:
    def __init__(
        self, directory: str, entrypoints: Tuple[str, ...], push_timeout: float
    ):
        self.directory = directory
        self.entrypoints = entrypoints
        self.push_timeout = push_timeout
        self.files = StaticFiles(directory=directory, html=True)
        self.pending_pushes: Set[asyncio.Task] = set()

    def start_pushes(self, request: Request) -> None:
        """Push the entrypoints in the background; the response does not wait for them."""
        if not supports_push(request) or not self.entrypoints:
            return
        task = asyncio.ensure_future(
            push_entrypoints(request, self.entrypoints, self.push_timeout)
        )
        self.pending_pushes.add(task)
        task.add_done_callback(self.pending_pushes.discard)

    async def serve(self, request: Request, is_index_request: bool) -> Response:
        if is_index_request:
            self.start_pushes(request)

        return await self.files.get_response(
            relative_file_path(request.url.path), request.scope
        )
