import asyncio
import json
import logging
from typing import AsyncIterator, Dict, List, Mapping, Tuple

import httpx
from fastapi import HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from frontdoor.errors import HeaderPolicyError
from frontdoor.upstream import UpstreamTarget
from frontdoor.vars import DEFAULT_UPSTREAM_HEADERS

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Status used for requests whose client went away before the upstream answered
CLIENT_CLOSED_REQUEST = 499


class ClientDisconnected(Exception):
    pass


def parse_header_overrides(raw: str) -> Dict[str, str]:
    """
    Parse the UPSTREAM_HEADER_OVERRIDES value.

    An empty string selects the reference deployment headers. Otherwise the
    value must be a JSON object of string header names to string values.
    """
    if not raw.strip():
        return dict(DEFAULT_UPSTREAM_HEADERS)

    try:
        overrides = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HeaderPolicyError(f"UPSTREAM_HEADER_OVERRIDES is not valid JSON: {e}") from e

    if not isinstance(overrides, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in overrides.items()
    ):
        raise HeaderPolicyError(
            "UPSTREAM_HEADER_OVERRIDES must be a JSON object of string values"
        )
    return overrides


def get_target_url(request: Request, upstream: UpstreamTarget) -> str:
    """Build the upstream URL; the path is forwarded as-is, prefix included."""
    path = request.url.path or "/"
    query_string = str(request.url.query)
    if query_string:
        path = f"{path}?{query_string}"
    return f"{upstream.url}{path}"


def replace_header(headers: List[Tuple[str, str]], name: str, value: str) -> None:
    """Drop every copy of ``name``; append ``value`` unless it is empty."""
    headers[:] = [(n, v) for n, v in headers if n != name]
    if value:
        headers.append((name, value))


def prepare_headers(request: Request, header_overrides: Mapping[str, str]) -> httpx.Headers:
    """
    Prepare headers for forwarding to the upstream.

    Hop-by-hop headers and Host are dropped (httpx sets Host from the target
    URL), repeated headers are kept in order, X-Forwarded-* headers describe
    the original request and the configured overrides are applied last.
    """
    headers = []

    for name, value in request.headers.items():
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower == "host":
            continue
        headers.append((name_lower, value))

    client_ip = request.client.host if request.client else "unknown"
    existing_xff = ", ".join(v for n, v in headers if n == "x-forwarded-for")
    replace_header(headers, "x-forwarded-for", f"{existing_xff}, {client_ip}".strip(", "))
    replace_header(headers, "x-forwarded-host", request.headers.get("host", ""))
    replace_header(headers, "x-forwarded-proto", request.url.scheme)

    for name, value in header_overrides.items():
        replace_header(headers, name.lower(), value)

    return httpx.Headers(headers)


def filter_response_headers(response: httpx.Response) -> list:
    """Raw upstream headers minus hop-by-hop ones, duplicates kept in order."""
    return [
        (name, value)
        for name, value in response.headers.raw
        if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
    ]


async def stream_response(response: httpx.Response) -> AsyncIterator[bytes]:
    """Relay the upstream body byte for byte, without decoding it."""
    try:
        if response.is_stream_consumed:
            # In-memory bodies are read on construction; the stream still holds the raw bytes
            async for chunk in response.stream:
                yield chunk
            return
        async for chunk in response.aiter_raw():
            yield chunk
    finally:
        await response.aclose()


async def wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def send_until_disconnect(
    client: httpx.AsyncClient, upstream_request: httpx.Request, request: Request
) -> httpx.Response:
    """
    Send the upstream request, abandoning it if the client disconnects first.

    Must be called after the request body has been read.
    """
    send_task = asyncio.ensure_future(client.send(upstream_request, stream=True))
    disconnect_task = asyncio.ensure_future(wait_for_disconnect(request))
    try:
        await asyncio.wait(
            {send_task, disconnect_task}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        send_task.cancel()
        raise
    finally:
        disconnect_task.cancel()

    if send_task.done():
        return send_task.result()

    send_task.cancel()
    try:
        await send_task
    except asyncio.CancelledError:
        pass
    raise ClientDisconnected()


async def forward_to_target(
    request: Request,
    client: httpx.AsyncClient,
    upstream: UpstreamTarget,
    header_overrides: Mapping[str, str],
) -> Response:
    """
    Forward the request to the upstream origin and stream its answer back.

    Status, headers and body are relayed unchanged apart from hop-by-hop
    headers. Transport failures become 502, timeouts 504.
    """
    with tracer.start_as_current_span("proxy_request") as span:
        target_url = get_target_url(request, upstream)
        span.set_attribute("proxy.target_url", target_url)
        span.set_attribute("proxy.method", request.method)

        logger.debug(f"Proxying {request.method} {request.url.path} -> {target_url}")

        headers = prepare_headers(request, header_overrides)
        body = await request.body()

        upstream_request = client.build_request(
            method=request.method,
            url=target_url,
            headers=headers,
            content=body or None,
        )

        try:
            response = await send_until_disconnect(client, upstream_request, request)
        except ClientDisconnected:
            logger.info(f"Client disconnected, aborted upstream request {target_url}")
            span.set_attribute("proxy.error", "client_disconnected")
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        except httpx.TimeoutException as e:
            logger.error(f"Proxy timeout for {target_url}: {e}")
            span.set_attribute("proxy.error", "timeout")
            raise HTTPException(status_code=504, detail="Gateway timeout")

        except httpx.ConnectError as e:
            logger.error(f"Failed to connect to target {target_url}: {e}")
            span.set_attribute("proxy.error", "connection_failed")
            raise HTTPException(
                status_code=502, detail="Bad gateway - cannot connect to target"
            )

        except httpx.HTTPError as e:
            logger.error(f"Proxy error for {target_url}: {e}", exc_info=True)
            span.set_attribute("proxy.error", str(e))
            raise HTTPException(status_code=502, detail=f"Bad gateway: {str(e)}")

        span.set_attribute("proxy.status_code", response.status_code)

        proxied = StreamingResponse(
            stream_response(response),
            status_code=response.status_code,
            background=BackgroundTask(response.aclose),
        )
        # Replace the defaults StreamingResponse computed with the upstream's own
        proxied.raw_headers = filter_response_headers(response)
        return proxied
