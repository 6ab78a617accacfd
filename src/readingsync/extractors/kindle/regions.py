"""Amazon storefront regions hosting the Kindle notebook."""

from __future__ import annotations

from dataclasses import dataclass

_REGION_HOSTS: dict[str, tuple[str, str]] = {
    "us": ("read.amazon.com", "www.amazon.com"),
    "uk": ("read.amazon.co.uk", "www.amazon.co.uk"),
    "gb": ("read.amazon.co.uk", "www.amazon.co.uk"),
    "de": ("read.amazon.de", "www.amazon.de"),
    "fr": ("read.amazon.fr", "www.amazon.fr"),
    "es": ("read.amazon.es", "www.amazon.es"),
    "it": ("read.amazon.it", "www.amazon.it"),
    "jp": ("read.amazon.co.jp", "www.amazon.co.jp"),
    "ca": ("read.amazon.ca", "www.amazon.ca"),
    "au": ("read.amazon.com.au", "www.amazon.com.au"),
    "in": ("read.amazon.in", "www.amazon.in"),
}

SUPPORTED_REGIONS = tuple(sorted(_REGION_HOSTS))


@dataclass(frozen=True, slots=True)
class AmazonRegion:
    code: str
    notebook_url: str
    signin_url: str

    @classmethod
    def from_code(cls, code: str) -> "AmazonRegion":
        normalized = code.strip().lower()
        hosts = _REGION_HOSTS.get(normalized)
        if hosts is None:
            supported = ", ".join(SUPPORTED_REGIONS)
            raise ValueError(f"Invalid Amazon region '{code}' (supported: {supported})")
        reader_host, store_host = hosts
        return cls(
            code=normalized,
            notebook_url=f"https://{reader_host}/notebook",
            signin_url=f"https://{store_host}/ap/signin",
        )
