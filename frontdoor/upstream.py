from dataclasses import dataclass

import httpx

from frontdoor.errors import UpstreamConfigError


@dataclass(frozen=True)
class UpstreamTarget:
    """The single origin that proxied requests are sent to."""

    scheme: str
    host: str

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}"


def parse_upstream(url: str) -> UpstreamTarget:
    """Parse an origin such as ``https://example.com``; any path on it is ignored."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise UpstreamConfigError(f"Invalid upstream URL {url!r}: {e}") from e

    if parsed.scheme not in ("http", "https"):
        raise UpstreamConfigError(
            f"Upstream URL {url!r} must use http or https, got {parsed.scheme!r}"
        )
    if not parsed.host:
        raise UpstreamConfigError(f"Upstream URL {url!r} has no host")

    # netloc keeps the port and IPv6 brackets but drops any userinfo
    return UpstreamTarget(scheme=parsed.scheme, host=parsed.netloc.decode("ascii"))
