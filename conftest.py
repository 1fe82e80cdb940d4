# Make `import frontdoor` resolve to this checkout when pytest runs from the
# repository root without an editable install.
import json
import os
import sys

import httpx
import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from frontdoor.server import create_app  # noqa: E402
from frontdoor.upstream import parse_upstream  # noqa: E402

TEST_UPSTREAM_URL = "https://upstream.example.com"
TEST_ENTRYPOINTS = ("/static/app.js", "/static/app.css")


@pytest.fixture
def build_dir(tmp_path):
    """A small compiled frontend: index, two entrypoints and a nested page."""
    root = tmp_path / "build"
    (root / "static").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "index.html").write_text("<html><body>home</body></html>")
    (root / "static" / "app.js").write_text("console.log('app');")
    (root / "static" / "app.css").write_text("body { color: red; }")
    (root / "docs" / "index.html").write_text("<html><body>docs</body></html>")
    (root / "asset-manifest.json").write_text(
        json.dumps({"entrypoints": list(TEST_ENTRYPOINTS)})
    )
    return str(root)


@pytest.fixture
def upstream_calls():
    """Requests seen by the stub upstream, in arrival order."""
    return []


@pytest.fixture
def upstream_handler(upstream_calls):
    """Default stub upstream: echoes the path back as JSON."""

    def handler(request: httpx.Request) -> httpx.Response:
        upstream_calls.append(request)
        return httpx.Response(
            200,
            json={"path": request.url.path, "query": request.url.query.decode()},
            headers={"x-upstream": "yes"},
        )

    return handler


@pytest.fixture
def make_app(build_dir, upstream_handler):
    """Factory building the app against ``build_dir`` and a stub upstream."""

    def _make_app(handler=None, **overrides):
        transport = httpx.MockTransport(handler or upstream_handler)
        options = dict(
            build_dir=build_dir,
            entrypoints=TEST_ENTRYPOINTS,
            upstream=parse_upstream(TEST_UPSTREAM_URL),
            header_overrides={},
            proxy_prefix="/CIS",
            metrics_path="",
            otlp_endpoint=None,
            client=httpx.AsyncClient(transport=transport),
        )
        options.update(overrides)
        return create_app(**options)

    return _make_app
