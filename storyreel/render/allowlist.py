"""Outbound URL policy for server-side media downloads.

Media URLs come from AI-generated content, so the render host only talks to a
fixed set of stock-media, audio and speech CDNs. The check works on the parsed
URL alone and never resolves DNS.
"""

from typing import Iterable
from urllib.parse import urlsplit

from storyreel.exceptions import DisallowedUrlError

ALLOWED_SCHEMES = frozenset({"http", "https"})


class UrlAllowlist:
    """Exact-or-subdomain hostname allowlist."""

    def __init__(self, domains: Iterable[str]):
        self.domains = tuple(d.strip().lower().rstrip(".") for d in domains if d.strip())

    @classmethod
    def from_settings(cls, settings) -> "UrlAllowlist":
        return cls(settings.allowed_media_domains)

    def is_allowed(self, url: str) -> bool:
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
            # Accessing .port validates it
            parts.port
        except ValueError:
            return False

        if parts.scheme.lower() not in ALLOWED_SCHEMES or not hostname:
            return False

        hostname = hostname.rstrip(".")
        return any(
            hostname == domain or hostname.endswith(f".{domain}") for domain in self.domains
        )

    def check(self, url: str) -> None:
        """Raise DisallowedUrlError unless ``url`` may be fetched."""
        if not self.is_allowed(url):
            raise DisallowedUrlError(url)

    def __contains__(self, url: str) -> bool:
        return self.is_allowed(url)

    def __repr__(self) -> str:
        return f"<UrlAllowlist {', '.join(self.domains)}>"
