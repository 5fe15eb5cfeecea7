import pytest

from propscrape.scraper.error_codes import ErrorCode
from propscrape.scraper.errors import (
    ExtractionFailed,
    NavigationTimeout,
    NoData,
    RateLimited,
    error_code_for,
)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (NavigationTimeout(url="https://www.realestate.com.au/p-1"), ErrorCode.NAVIGATION_TIMEOUT),
        (RateLimited("Rate limit detected"), ErrorCode.RATE_LIMITED),
        (ExtractionFailed("Both content script and fallback scraping failed"), ErrorCode.EXTRACTION_FAILED),
        (NoData(), ErrorCode.NO_DATA),
        (KeyError("address"), ErrorCode.INTERNAL),
    ],
)
def test_error_code_for_maps_taxonomy(exc: BaseException, expected: str) -> None:
    assert error_code_for(exc) == expected


def test_scraper_error_defaults_message_to_code() -> None:
    exc = NavigationTimeout(url="https://www.realestate.com.au/p-1")
    assert str(exc) == ErrorCode.NAVIGATION_TIMEOUT
    assert exc.url == "https://www.realestate.com.au/p-1"
