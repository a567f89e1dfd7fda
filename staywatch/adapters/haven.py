"""Haven holiday parks adapter."""

import logging
from datetime import date
from typing import Optional
from urllib.parse import urlencode

from selectolax.parser import HTMLParser

from staywatch.adapters.base import Offer, RawCandidate, SearchStats, UserIntent
from staywatch.adapters.parsing import (
    extract_price,
    first_match,
    parse_bedrooms,
    parse_date,
    parse_discount,
    parse_expiry,
    parse_nights,
    select_all,
    text_of,
)
from staywatch.adapters.support import ProviderSupport
from staywatch.db.models import Availability

logger = logging.getLogger(__name__)

RESULT_SELECTORS = [".accommodation-result", ".holiday-card"]
PRICE_SELECTORS = [".price-total", ".holiday-price"]
DATE_SELECTORS = [".arrival-date", ".check-in-date"]
NIGHTS_SELECTORS = [".nights", ".duration"]
SOLD_OUT_SELECTORS = [".sold-out", ".not-available"]
TYPE_SELECTORS = [".accommodation-type", ".grade"]
BEDROOM_SELECTORS = [".bedrooms", ".sleeps"]
PARK_SELECTORS = [".park-name", ".location"]

OFFER_SELECTORS = [".offer", ".special-offer-card"]


class HavenAdapter:
    """Haven search results are server-rendered; HTTP first, browser fallback."""

    code = "haven"
    name = "Haven"

    def __init__(self, base_url: str = "https://www.haven.com", support: Optional[ProviderSupport] = None):
        self.base_url = base_url
        self.support = support or ProviderSupport(self.code, base_url)

    def is_enabled(self) -> bool:
        return self.support.is_enabled()

    def build_search_url(self, intent: UserIntent) -> str:
        params = {
            "adults": intent.adults,
            "children": intent.children,
            "check-in": intent.stay_start.isoformat(),
            "check-out": intent.stay_end.isoformat(),
            "nights": intent.stay_nights,
        }
        if intent.park_ids:
            params["park"] = intent.park_ids[0]
        return f"{self.base_url}/holidays/search?{urlencode(params)}"

    def build_offers_url(self) -> str:
        return f"{self.base_url}/offers"

    async def search(
        self,
        intent: UserIntent,
        automated: bool = True,
        stats: Optional[SearchStats] = None,
    ) -> list[RawCandidate]:
        url = self.build_search_url(intent)
        return await self.support.search_page(
            url,
            lambda html: self.parse_search_results(html, intent),
            automated=automated,
            stats=stats,
            wait_selector=", ".join(RESULT_SELECTORS),
        )

    async def fetch_offers(self) -> list[Offer]:
        return await self.support.offers_page(self.build_offers_url(), self.parse_offers)

    def parse_search_results(self, html: str, intent: UserIntent) -> list[RawCandidate]:
        """
        Parse Haven result cards.

        The search page is scoped to one arrival date and duration, so a card
        without its own date or nights inherits them from the query. A card
        that shows a date or nights that cannot be parsed is dropped.
        """
        tree = HTMLParser(html)
        results = []

        for card in select_all(tree, RESULT_SELECTORS):
            price = extract_price(text_of(first_match(card, PRICE_SELECTORS)))
            if price is None:
                continue

            stay_date = self._card_date(text_of(first_match(card, DATE_SELECTORS)), intent.stay_start)
            if stay_date is None:
                logger.debug("Skipping Haven card with unparseable arrival date")
                continue

            nights_text = text_of(first_match(card, NIGHTS_SELECTORS))
            nights = parse_nights(nights_text) if nights_text else intent.stay_nights
            if nights is None:
                logger.debug("Skipping Haven card with unparseable duration")
                continue

            sold_out = first_match(card, SOLD_OUT_SELECTORS) is not None
            link = card.css_first("a")

            results.append(
                RawCandidate(
                    stay_start_date=stay_date,
                    stay_nights=nights,
                    price_total=price,
                    availability=Availability.SOLD_OUT if sold_out else Availability.AVAILABLE,
                    accom_type=text_of(first_match(card, TYPE_SELECTORS)),
                    bedrooms=parse_bedrooms(text_of(first_match(card, BEDROOM_SELECTORS))),
                    park_id=card.attributes.get("data-park-id") or (intent.park_ids[0] if intent.park_ids else None),
                    property_name=text_of(first_match(card, PARK_SELECTORS)),
                    source_url=self.support.absolute_url(link.attributes.get("href") if link else None),
                )
            )

        return results

    @staticmethod
    def _card_date(text: Optional[str], default: date) -> Optional[date]:
        if not text:
            return default
        return parse_date(text, default_year=default.year)

    def parse_offers(self, html: str) -> list[Offer]:
        tree = HTMLParser(html)
        offers = []
        for card in select_all(tree, OFFER_SELECTORS):
            title = text_of(first_match(card, [".offer-title", "h2", "h3"]))
            if not title:
                continue
            discount_text = text_of(first_match(card, [".discount-amount", ".save-text"])) or ""
            discount_type, discount_value = parse_discount(f"{discount_text} {title}")
            expiry_text = text_of(first_match(card, [".valid-until", ".offer-ends"]))
            link = card.css_first("a")
            offers.append(
                Offer(
                    title=title,
                    discount_type=discount_type,
                    discount_value=discount_value,
                    description=text_of(card.css_first("p")),
                    voucher_code=text_of(first_match(card, [".code", ".promo-code"])),
                    ends_at=parse_expiry(f"ends {expiry_text}") if expiry_text else None,
                    source_url=self.support.absolute_url(link.attributes.get("href") if link else None),
                )
            )
        return offers

    async def cleanup(self) -> None:
        await self.support.cleanup()
