import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "frontdoor")

# An empty PORT behaves like an unset one
PORT = os.environ.get("PORT") or "8080"
HOST = os.environ.get("HOST", "0.0.0.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

BUILD_DIR = os.environ.get("BUILD_DIR", "build")
ASSET_MANIFEST = os.environ.get(
    "ASSET_MANIFEST", os.path.join(BUILD_DIR, "asset-manifest.json")
)

UPSTREAM_URL = os.environ.get("UPSTREAM_URL", "https://rtt.metrolinktrains.com")
PROXY_PREFIX = os.environ.get("PROXY_PREFIX", "/CIS")
# Seconds, validated by main.parse_seconds
PROXY_TIMEOUT = os.environ.get("PROXY_TIMEOUT", "30")
PUSH_TIMEOUT = os.environ.get("PUSH_TIMEOUT", "1")

# JSON object of header -> value applied to every proxied request.
# An empty value removes the header; "{}" disables the policy entirely.
UPSTREAM_HEADER_OVERRIDES = os.environ.get("UPSTREAM_HEADER_OVERRIDES", "")

# Header set used by the reference deployment when no override is configured
DEFAULT_UPSTREAM_HEADERS = {
    "Referer": "http://localhost:3000/",
    "Accept": "application/json",
    "Cookie": "",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_2) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/79.0.3945.130 Safari/537.36"
    ),
}

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Every path is a candidate static file, so metrics stay hidden unless asked for
METRICS_PATH = os.getenv("METRICS_PATH", "")
