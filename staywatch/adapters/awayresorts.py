"""Away Resorts adapter."""

import logging
from typing import Optional
from urllib.parse import urlencode

from selectolax.parser import HTMLParser

from staywatch.adapters.base import Offer, RawCandidate, SearchStats, UserIntent
from staywatch.adapters.parsing import (
    compact,
    extract_price,
    first_match,
    parse_date,
    parse_discount,
    parse_expiry,
    select_all,
    text_of,
)
from staywatch.adapters.support import ProviderSupport
from staywatch.db.models import Availability

logger = logging.getLogger(__name__)

DEFAULT_PARK_ID = "7"

# Normalised resort name -> Away Resorts parkID
RESORT_PARK_IDS = {
    "tattershall": "7",
    "tattershalllakes": "7",
    "sandyballs": "1",
    "millrythe": "18",
    "whitecliff": "15",
    "whitecliffbay": "15",
    "merseaisland": "12",
    "barmouthbay": "20",
    "cleethorpes": "17",
    "cleethorpespearl": "17",
    "goldensands": "21",
    "stives": "23",
    "stivesbay": "23",
    "newquay": "24",
    "newquaybay": "24",
    "retallack": "19",
    "rookley": "13",
    "thelakesrookley": "13",
    "colwell": "14",
    "thebaycolwell": "14",
    "bostonwest": "26",
    "eastfleet": "27",
    "glendorgal": "28",
    "gara": "25",
    "gararock": "25",
}

OFFER_SELECTORS = [".card", ".offer-card", ".promo-block"]


def park_id_for(intent: UserIntent) -> str:
    """Explicit park id, else the resort named by the region, else Tattershall Lakes."""
    if intent.park_ids:
        return intent.park_ids[0]
    return RESORT_PARK_IDS.get(compact(intent.region), DEFAULT_PARK_ID)


class AwayResortsAdapter:
    """Away Resorts shows a date scroller of stays for one park and date range."""

    code = "awayresorts"
    name = "Away Resorts"

    def __init__(self, base_url: str = "https://www.awayresorts.co.uk", support: Optional[ProviderSupport] = None):
        self.base_url = base_url
        self.support = support or ProviderSupport(self.code, base_url)

    def is_enabled(self) -> bool:
        return self.support.is_enabled()

    def build_search_url(self, intent: UserIntent) -> str:
        params = {
            "parkID": park_id_for(intent),
            "from": intent.stay_start.isoformat(),
            "to": intent.stay_end.isoformat(),
            "adults": intent.adults,
            "children": intent.children,
        }
        return f"{self.base_url}/search/?{urlencode(params)}"

    def build_offers_url(self) -> str:
        return f"{self.base_url}/latest-offers/"

    async def search(
        self,
        intent: UserIntent,
        automated: bool = True,
        stats: Optional[SearchStats] = None,
    ) -> list[RawCandidate]:
        return await self.support.search_page(
            self.build_search_url(intent),
            lambda html: self.parse_search_results(html, intent),
            automated=automated,
            stats=stats,
            browser_first=True,
            wait_selector=".date-scroll__day",
        )

    async def fetch_offers(self) -> list[Offer]:
        return await self.support.offers_page(
            self.build_offers_url(), self.parse_offers, browser_first=True
        )

    def parse_search_results(self, html: str, intent: UserIntent) -> list[RawCandidate]:
        """
        Parse date-scroller cells.

        Sold-out cells carry no price and are skipped. A cell's own
        ``data-date`` wins over the searched date when present.
        """
        tree = HTMLParser(html)
        park_id = park_id_for(intent)
        results = []

        for cell in tree.css(".date-scroll__day"):
            classes = cell.attributes.get("class") or ""
            if "date-scroll__day--sold" in classes or "Sold out" in cell.text():
                continue

            book = cell.css_first('a[href*="/book/"]')
            if book is None:
                continue

            name = book.attributes.get("data-name")
            if not name:
                section = self._enclosing(cell, "search-results__accommodation")
                name = text_of(section.css_first("h2")) if section is not None else None
            if not name:
                continue

            price = extract_price(book.attributes.get("data-cost"))
            if price is None:
                price = extract_price(
                    text_of(first_match(cell, [".date-scroll__price", ".-h3", ".-h4-like"]))
                )
            if price is None:
                continue

            raw_date = cell.attributes.get("data-date") or book.attributes.get("data-date")
            stay_date = parse_date(raw_date) if raw_date else intent.stay_start
            if stay_date is None:
                continue

            results.append(
                RawCandidate(
                    stay_start_date=stay_date,
                    stay_nights=intent.stay_nights,
                    price_total=price,
                    availability=Availability.AVAILABLE,
                    accom_type=name,
                    accom_type_id=book.attributes.get("data-id"),
                    park_id=park_id,
                    property_name=name,
                    source_url=self.support.absolute_url(book.attributes.get("href")),
                )
            )

        return results

    @staticmethod
    def _enclosing(node, class_name: str):
        current = node.parent
        while current is not None:
            if class_name in (current.attributes.get("class") or ""):
                return current
            current = current.parent
        return None

    def parse_offers(self, html: str) -> list[Offer]:
        tree = HTMLParser(html)
        offers = []
        for card in select_all(tree, OFFER_SELECTORS):
            title = text_of(first_match(card, ["h3", ".card-title"]))
            if not title:
                continue
            description = text_of(first_match(card, ["p", ".card-text"]))
            full_text = f"{title} {description or ''}"
            discount_type, discount_value = parse_discount(full_text)
            link = card.css_first("a")
            offers.append(
                Offer(
                    title=title,
                    discount_type=discount_type,
                    discount_value=discount_value,
                    description=description,
                    ends_at=parse_expiry(full_text),
                    source_url=self.support.absolute_url(link.attributes.get("href") if link else None),
                )
            )
        return offers

    async def cleanup(self) -> None:
        await self.support.cleanup()
