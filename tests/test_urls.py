from __future__ import annotations

import pytest

from propscrape.scraper.urls import (
    BaseListingUrl,
    construct_page_url,
    extract_base_url,
    filter_property_urls,
)


@pytest.mark.parametrize(
    "url, base_path, search",
    [
        (
            "https://www.realestate.com.au/buy/in-melbourne,+vic/list-3?activeSort=list-date",
            "https://www.realestate.com.au/buy/in-melbourne,+vic",
            "?activeSort=list-date",
        ),
        (
            "https://www.realestate.com.au/buy/in-melbourne,+vic/list-1",
            "https://www.realestate.com.au/buy/in-melbourne,+vic",
            "",
        ),
        (
            "https://www.realestate.com.au/rent/in-sydney/",
            "https://www.realestate.com.au/rent/in-sydney/",
            "",
        ),
    ],
)
def test_extract_base_url(url: str, base_path: str, search: str) -> None:
    assert extract_base_url(url) == BaseListingUrl(base_path=base_path, search=search)


def test_construct_page_url_inserts_segment_before_query() -> None:
    base = BaseListingUrl("https://www.realestate.com.au/buy/in-vic", "?source=refinement")

    assert construct_page_url(base, 7) == "https://www.realestate.com.au/buy/in-vic/list-7?source=refinement"


@pytest.mark.parametrize("page_number", [1, 2, 25])
def test_base_url_round_trip(page_number: int) -> None:
    base = BaseListingUrl("https://www.realestate.com.au/sold/in-nsw", "?misc=ex-under-contract")

    assert extract_base_url(construct_page_url(base, page_number)) == base


@pytest.mark.parametrize("page_number", [0, -1])
def test_construct_page_url_rejects_non_positive(page_number: int) -> None:
    with pytest.raises(ValueError):
        construct_page_url(BaseListingUrl("https://www.realestate.com.au/buy"), page_number)


def test_filter_property_urls_trims_dedupes_and_checks_domain() -> None:
    urls = [
        " https://www.realestate.com.au/property-house-vic-1 ",
        "https://www.realestate.com.au/property-house-vic-1",
        "https://example.com/property-house-vic-2",
        "",
        None,
        42,
        "https://www.realestate.com.au/property-unit-vic-3",
        "https://www.realestate.com.au/property-unit-vic-4",
    ]

    result = filter_property_urls(urls, exclude={"https://www.realestate.com.au/property-unit-vic-4"})

    assert result == [
        "https://www.realestate.com.au/property-house-vic-1",
        "https://www.realestate.com.au/property-unit-vic-3",
    ]


@pytest.mark.parametrize(
    "url",
    [
        "https://evil.example/property-1?ref=realestate.com.au",
        "https://realestate.com.au.evil.example/property-2",
        "https://notrealestate.com.au/property-3",
        "/property-house-vic-4",
    ],
)
def test_filter_property_urls_rejects_foreign_hosts(url: str) -> None:
    assert filter_property_urls([url]) == []


def test_filter_property_urls_accepts_subdomains_and_bare_domain() -> None:
    urls = [
        "https://realestate.com.au/property-house-vic-1",
        "https://WWW.realestate.com.au/property-house-vic-2",
    ]
    assert filter_property_urls(urls) == urls
