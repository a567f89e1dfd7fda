"""Hoseasons adapter."""

import asyncio
import json
import logging
import re
from typing import Any, Optional
from urllib.parse import urlencode

from selectolax.parser import HTMLParser

from staywatch.adapters.base import Offer, RawCandidate, SearchStats, UserIntent
from staywatch.adapters.parsing import (
    extract_price,
    first_match,
    parse_date,
    parse_discount,
    parse_expiry,
    parse_nights,
    select_all,
    slugify,
    text_of,
)
from staywatch.adapters.support import ProviderSupport
from staywatch.config import settings
from staywatch.db.models import Availability
from staywatch.errors import ProviderDisabledError, ProviderFetchError

logger = logging.getLogger(__name__)

API_URL_HINTS = ("/api/", "search", "properties", "accommodation")
PROPERTY_LIST_KEYS = ("properties", "results", "accommodations")
CARD_SELECTORS = ['[data-testid="property-card"]', ".property-card", ".search-result"]
OFFER_SELECTORS = [".offer-card", ".deal-item"]
PRICE_IN_TEXT_RE = re.compile(r"£\s*([\d,]+(?:\.\d{2})?)")


def region_slug(region: Optional[str]) -> str:
    """Map a region name to the Hoseasons location slug."""
    if not region:
        return ""
    lower = region.lower().strip()
    if "kielder" in lower or lower == "northumberland":
        return "northumberland"
    if lower in ("kendal", "lake district", "lakes", "cumbria"):
        return "cumbria"
    return slugify(lower)


def property_list(payload: Any) -> Optional[list]:
    """Find the property array in an intercepted search API payload."""
    if not isinstance(payload, dict):
        return None
    for key in PROPERTY_LIST_KEYS:
        if isinstance(payload.get(key), list):
            return payload[key]
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("properties"), list):
        return data["properties"]
    return None


class HoseasonsAdapter:
    """
    Hoseasons loads search results from a JSON API after the page renders.

    The browser intercepts that API response; DOM cards are the fallback.
    Without a browser, the server-rendered page is parsed directly.
    """

    code = "hoseasons"
    name = "Hoseasons"

    def __init__(self, base_url: str = "https://www.hoseasons.co.uk", support: Optional[ProviderSupport] = None):
        self.base_url = base_url
        self.support = support or ProviderSupport(self.code, base_url)

    def is_enabled(self) -> bool:
        return self.support.is_enabled()

    def build_search_url(self, intent: UserIntent, park_id: Optional[str] = None) -> str:
        params = {
            "adult": intent.adults,
            "child": intent.children or 0,
            "infant": 0,
            "pets": 1 if intent.pets else 0,
            "range": 0,
            "nights": intent.stay_nights,
            "accommodationType": "holiday-parks",
            "start": intent.stay_start.strftime("%d-%m-%Y"),
            "page": 1,
            "sort": "recommended",
            "displayMode": "LIST",
        }
        if park_id:
            path = f"/holiday-parks/{park_id}"
        else:
            slug = region_slug(intent.region)
            path = f"/holiday-parks/{slug}" if slug else "/search"
        return f"{self.base_url}{path}?{urlencode(params)}"

    def build_offers_url(self) -> str:
        return f"{self.base_url}/special-offers"

    async def search(
        self,
        intent: UserIntent,
        automated: bool = True,
        stats: Optional[SearchStats] = None,
    ) -> list[RawCandidate]:
        if not self.is_enabled():
            raise ProviderDisabledError(self.code)
        stats = stats if stats is not None else SearchStats()

        if intent.park_ids:
            return await self._search_parks(intent, automated, stats)
        return await self._search_single(intent, automated, stats)

    async def _search_parks(self, intent: UserIntent, automated: bool, stats: SearchStats) -> list[RawCandidate]:
        """
        Search each requested park, keeping the parks that succeed.

        Raises:
            ProviderFetchError: Every park failed (the first failure is raised)
        """
        batches = await asyncio.gather(
            *(self._search_single(intent, automated, stats, park_id) for park_id in intent.park_ids),
            return_exceptions=True,
        )
        results: list[RawCandidate] = []
        failures: list[ProviderFetchError] = []
        for park_id, batch in zip(intent.park_ids, batches):
            if isinstance(batch, ProviderFetchError):
                logger.warning(f"Hoseasons search failed for park {park_id}: {batch}")
                failures.append(batch)
                continue
            if isinstance(batch, BaseException):
                raise batch
            results.extend(batch)

        if failures and len(failures) == len(intent.park_ids):
            raise failures[0]
        return results

    async def _search_single(
        self,
        intent: UserIntent,
        automated: bool,
        stats: SearchStats,
        park_id: Optional[str] = None,
    ) -> list[RawCandidate]:
        url = self.build_search_url(intent, park_id)
        await self.support.check_robots(url, automated, stats)

        if not settings.playwright_enabled:
            html = await self.support.fetcher.fetch_html(url, stats)
            return self.parse_search_results(html, intent)

        rendered = await self.support.fetcher.fetch_html_with_browser(
            url,
            stats,
            capture_json=lambda response_url, payload: (
                any(hint in response_url for hint in API_URL_HINTS)
                and property_list(payload) is not None
            ),
            json_wait_ms=20000,
        )
        for payload in reversed(rendered.json_payloads):
            results = self.parse_api_response(payload, intent)
            if results:
                return results

        logger.warning("No Hoseasons search API response intercepted, falling back to DOM")
        return self.parse_search_results(rendered.html, intent)

    async def fetch_offers(self) -> list[Offer]:
        return await self.support.offers_page(self.build_offers_url(), self.parse_offers)

    def parse_api_response(self, payload: Any, intent: UserIntent) -> list[RawCandidate]:
        """Convert the search API's property array into candidates."""
        properties = property_list(payload) or []
        results = []
        for prop in properties:
            if not isinstance(prop, dict):
                continue
            candidate = self._candidate_from_property(prop, intent)
            if candidate is not None:
                results.append(candidate)
        return results

    def _candidate_from_property(self, prop: dict, intent: UserIntent) -> Optional[RawCandidate]:
        raw_price = prop.get("priceFrom") or prop.get("lowestPrice")
        if isinstance(raw_price, bool) or not isinstance(raw_price, (int, float)):
            return None
        price = extract_price(str(raw_price))
        if price is None:
            return None

        stay_date = intent.stay_start
        if prop.get("startDate"):
            stay_date = parse_date(str(prop["startDate"]))
            if stay_date is None:
                return None

        nights = intent.stay_nights
        if prop.get("lengthOfStay") is not None:
            nights = parse_nights(str(prop["lengthOfStay"]))
            if nights is None:
                return None

        bedrooms = prop.get("bedrooms") or prop.get("bedroomCount")
        if not isinstance(bedrooms, int) or isinstance(bedrooms, bool):
            bedrooms = None

        pets_allowed = None
        if isinstance(prop.get("petFriendly"), bool):
            pets_allowed = prop["petFriendly"]
        elif prop.get("petsGoFree") is True:
            pets_allowed = True

        code = prop.get("code")
        return RawCandidate(
            stay_start_date=stay_date,
            stay_nights=nights,
            price_total=price,
            availability=Availability.AVAILABLE,
            accom_type=prop.get("accommodationType"),
            bedrooms=bedrooms,
            pets_allowed=pets_allowed,
            park_id=str(code) if code else None,
            property_name=prop.get("displayName") or prop.get("name") or prop.get("title"),
            location=prop.get("location") or prop.get("regionName"),
            source_url=f"{self.base_url}/holiday-parks/{code}" if code else None,
        )

    def parse_search_results(self, html: str, intent: UserIntent) -> list[RawCandidate]:
        """
        Parse a rendered or server-side results page.

        Embedded Next.js data is preferred; otherwise property cards that state
        a price are read, inheriting the searched date and duration.
        """
        tree = HTMLParser(html)

        next_data = tree.css_first("script#__NEXT_DATA__")
        if next_data is not None:
            try:
                payload = json.loads(next_data.text())
            except ValueError:
                payload = None
            found = self._find_properties(payload)
            if found:
                return self.parse_api_response({"properties": found}, intent)

        results = []
        for card in select_all(tree, CARD_SELECTORS):
            match = PRICE_IN_TEXT_RE.search(card.text(separator=" "))
            price = extract_price(match.group(1)) if match else None
            if price is None:
                continue
            link = card.css_first("a")
            href = link.attributes.get("href") if link else None
            results.append(
                RawCandidate(
                    stay_start_date=intent.stay_start,
                    stay_nights=intent.stay_nights,
                    price_total=price,
                    availability=Availability.AVAILABLE,
                    property_name=text_of(first_match(card, ["h3", "h2", ".card-header"])),
                    location=text_of(card.css_first(".location")),
                    source_url=self.support.absolute_url(href),
                )
            )
        return results

    def _find_properties(self, payload: Any, depth: int = 0) -> Optional[list]:
        """Depth-limited search for a property array inside page data."""
        if depth > 6:
            return None
        found = property_list(payload)
        if found:
            return found
        if isinstance(payload, dict):
            children = payload.values()
        elif isinstance(payload, list):
            children = payload
        else:
            return None
        for child in children:
            if isinstance(child, (dict, list)):
                found = self._find_properties(child, depth + 1)
                if found:
                    return found
        return None

    def parse_offers(self, html: str) -> list[Offer]:
        tree = HTMLParser(html)
        offers = []
        for card in select_all(tree, OFFER_SELECTORS):
            title = text_of(first_match(card, [".offer-title", "h2", "h3"]))
            if not title:
                continue
            discount_text = text_of(first_match(card, [".discount", ".save"])) or title
            discount_type, discount_value = parse_discount(discount_text)
            link = card.css_first("a")
            offers.append(
                Offer(
                    title=title,
                    discount_type=discount_type,
                    discount_value=discount_value,
                    description=text_of(card.css_first("p")),
                    voucher_code=text_of(first_match(card, [".voucher-code", ".promo-code"])),
                    ends_at=parse_expiry(card.text(separator=" ")),
                    source_url=self.support.absolute_url(link.attributes.get("href") if link else None),
                )
            )
        return offers

    async def cleanup(self) -> None:
        await self.support.cleanup()

