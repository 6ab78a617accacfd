from __future__ import annotations

import pytest

from readingsync.extractors.kindle.regions import SUPPORTED_REGIONS, AmazonRegion


@pytest.mark.parametrize(
    ("code", "host"),
    [("us", "read.amazon.com"), ("UK", "read.amazon.co.uk"), ("de", "read.amazon.de"), (" jp ", "read.amazon.co.jp")],
)
def test_region_urls(code: str, host: str) -> None:
    region = AmazonRegion.from_code(code)

    assert region.notebook_url == f"https://{host}/notebook"
    assert region.code == code.strip().lower()


def test_unknown_region_lists_supported_codes() -> None:
    with pytest.raises(ValueError, match="supported"):
        AmazonRegion.from_code("mars")
    assert "us" in SUPPORTED_REGIONS
