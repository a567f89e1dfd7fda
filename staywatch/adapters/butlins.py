"""Butlin's resorts adapter."""

import logging
import re
from typing import Optional
from urllib.parse import urlencode

from selectolax.parser import HTMLParser, Node

from staywatch.adapters.base import Offer, RawCandidate, SearchStats, UserIntent
from staywatch.adapters.parsing import extract_price, parse_discount, text_of
from staywatch.adapters.support import ProviderSupport
from staywatch.db.models import Availability, DiscountType

logger = logging.getLogger(__name__)

NO_RESULTS_PHRASES = ("no availability", "no breaks found", "sorry, no")
ACCOMMODATION_WORDS = ("room", "apartment", "gold", "silver", "standard")
PRICE_IN_TEXT_RE = re.compile(r"£\s*([\d,]+(?:\.\d{2})?)")

RESORTS = {
    "BG": "Bognor Regis",
    "MH": "Minehead",
    "SK": "Skegness",
}


def resort_code(region: Optional[str]) -> str:
    """Map a region or resort name to a Butlin's resort code (Bognor by default)."""
    q = (region or "").lower()
    if "bognor" in q or "regis" in q:
        return "BG"
    if "minehead" in q:
        return "MH"
    if "skegness" in q:
        return "SK"
    return "BG"


class ButlinsAdapter:
    """
    Butlin's renders its booking search client-side.

    The search page lists accommodation for exactly one start date and
    duration, so candidates carry the requested date and nights.
    """

    code = "butlins"
    name = "Butlin's"

    def __init__(self, base_url: str = "https://www.butlins.com", support: Optional[ProviderSupport] = None):
        self.base_url = base_url
        self.support = support or ProviderSupport(self.code, base_url)

    def is_enabled(self) -> bool:
        return self.support.is_enabled()

    def build_search_url(self, intent: UserIntent) -> str:
        params = {
            "resort": resort_code(intent.region),
            "startDate": intent.stay_start.isoformat(),
            "duration": intent.stay_nights,
            "adults": intent.adults,
            "children": intent.children,
        }
        return f"{self.base_url}/booking/search?{urlencode(params)}"

    def build_offers_url(self) -> str:
        return f"{self.base_url}/offers"

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
        )

    async def fetch_offers(self) -> list[Offer]:
        return await self.support.offers_page(
            self.build_offers_url(), self.parse_offers, browser_first=True
        )

    def parse_search_results(self, html: str, intent: UserIntent) -> list[RawCandidate]:
        tree = HTMLParser(html)
        body_text = (text_of(tree.body) or "").lower()
        if any(phrase in body_text for phrase in NO_RESULTS_PHRASES):
            logger.info("Butlin's reports no availability for the requested break")
            return []

        code = resort_code(intent.region)
        search_url = self.build_search_url(intent)
        results = []
        seen: set[tuple[str, str]] = set()

        for heading in tree.css("h2, h3"):
            title = text_of(heading)
            if not title or not any(word in title.lower() for word in ACCOMMODATION_WORDS):
                continue

            price = self._nearby_price(heading)
            if price is None:
                continue

            key = (title, str(price))
            if key in seen:
                continue
            seen.add(key)

            results.append(
                RawCandidate(
                    stay_start_date=intent.stay_start,
                    stay_nights=intent.stay_nights,
                    price_total=price,
                    availability=Availability.AVAILABLE,
                    accom_type=title,
                    park_id=code,
                    property_name=title,
                    location=RESORTS[code],
                    source_url=search_url,
                )
            )

        return results

    @staticmethod
    def _nearby_price(heading: Node):
        """Price in the heading's enclosing block, looking one level further out if needed."""
        container = heading.parent
        for _ in range(2):
            if container is None:
                return None
            match = PRICE_IN_TEXT_RE.search(container.text(separator=" "))
            if match:
                return extract_price(match.group(1))
            container = container.parent
        return None

    def parse_offers(self, html: str) -> list[Offer]:
        tree = HTMLParser(html)
        offers = []
        seen: set[str] = set()
        for block in tree.css('section, div[class*="Promo"], div[class*="Card"]'):
            title = text_of(block.css_first("h2, h3"))
            if not title or title in seen:
                continue
            discount_type, discount_value = parse_discount(title)
            if discount_type == DiscountType.PERK:
                discount_type = DiscountType.SALE_PRICE
            seen.add(title)
            offers.append(
                Offer(
                    title=title,
                    discount_type=discount_type,
                    discount_value=discount_value,
                    description=text_of(block.css_first("p")),
                    source_url=self.build_offers_url(),
                )
            )
        return offers

    async def cleanup(self) -> None:
        await self.support.cleanup()
