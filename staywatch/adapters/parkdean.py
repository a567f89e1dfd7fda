"""Parkdean Resorts adapter."""

import logging
import re
from typing import Optional
from urllib.parse import urlencode, urlparse

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
    parse_voucher,
    select_all,
    text_of,
)
from staywatch.adapters.support import ProviderSupport
from staywatch.db.models import Availability

logger = logging.getLogger(__name__)

RESULT_SELECTORS = [".search-result", ".holiday-card", ".result-item"]
NAME_SELECTORS = [".property-name", "h3", ".title"]
PRICE_SELECTORS = [".price", ".total-price", ".cost"]
LOCATION_SELECTORS = [".location", ".region"]
OFFER_SELECTORS = [".offer-item", ".deal-card", ".promo-banner"]


def park_id_from_link(href: Optional[str]) -> Optional[str]:
    """Last path segment of a park link, e.g. /parks/sandford/ -> sandford."""
    if not href:
        return None
    segments = [s for s in urlparse(href).path.split("/") if s]
    return segments[-1] if segments else None


class ParkdeanAdapter:
    """Parkdean renders results client-side, so search goes to the browser first."""

    code = "parkdean"
    name = "Parkdean Resorts"

    def __init__(
        self,
        base_url: str = "https://www.parkdeanresorts.co.uk",
        support: Optional[ProviderSupport] = None,
    ):
        self.base_url = base_url
        self.support = support or ProviderSupport(self.code, base_url)

    def is_enabled(self) -> bool:
        return self.support.is_enabled()

    def build_search_url(self, intent: UserIntent) -> str:
        params = {"adults": intent.adults}
        if intent.children:
            params["children"] = intent.children
        params["arriving"] = intent.stay_start.strftime("%d/%m/%Y")
        params["nights"] = intent.stay_nights
        if intent.region:
            params["region"] = intent.region
        if intent.pets:
            params["pets"] = 1
        return f"{self.base_url}/search-results/?{urlencode(params)}"

    def build_offers_url(self) -> str:
        return f"{self.base_url}/holidays/offers/"

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
            wait_selector=", ".join(RESULT_SELECTORS),
        )

    async def fetch_offers(self) -> list[Offer]:
        return await self.support.offers_page(
            self.build_offers_url(), self.parse_offers, browser_first=True
        )

    def parse_search_results(self, html: str, intent: UserIntent) -> list[RawCandidate]:
        """
        Parse result cards.

        Cards rarely repeat the arrival date or duration since the page is
        scoped to the search; explicit values are used when present.
        """
        tree = HTMLParser(html)
        results = []

        for card in select_all(tree, RESULT_SELECTORS):
            price = extract_price(text_of(first_match(card, PRICE_SELECTORS)))
            if price is None:
                continue

            date_node = card.css_first(".arrival-date, .date")
            stay_date = intent.stay_start
            if date_node is not None:
                stay_date = parse_date(text_of(date_node), default_year=intent.stay_start.year)
                if stay_date is None:
                    continue

            nights_node = card.css_first(".nights, .duration")
            nights = intent.stay_nights
            if nights_node is not None:
                nights = parse_nights(text_of(nights_node))
                if nights is None:
                    continue

            link = card.css_first("a")
            href = link.attributes.get("href") if link else None
            card_text = card.text(separator=" ").lower()

            results.append(
                RawCandidate(
                    stay_start_date=stay_date,
                    stay_nights=nights,
                    price_total=price,
                    availability=Availability.SOLD_OUT if "sold out" in card_text else Availability.AVAILABLE,
                    accom_type=text_of(card.css_first(".accommodation-type, .grade")),
                    bedrooms=parse_bedrooms(text_of(card.css_first(".bedrooms"))),
                    pets_allowed=True if card.css_first(".pet-friendly") is not None else None,
                    park_id=park_id_from_link(href),
                    property_name=text_of(first_match(card, NAME_SELECTORS)),
                    location=text_of(first_match(card, LOCATION_SELECTORS)),
                    source_url=self.support.absolute_url(href),
                )
            )

        logger.debug(f"Parsed {len(results)} Parkdean result cards")
        return results

    def parse_offers(self, html: str) -> list[Offer]:
        tree = HTMLParser(html)
        offers = []
        for card in select_all(tree, OFFER_SELECTORS):
            title = text_of(first_match(card, [".title", "h3", "h4"]))
            if not title:
                continue
            description = text_of(first_match(card, [".description", "p"]))
            full_text = f"{title} {description or ''}"
            discount_type, discount_value = parse_discount(full_text)
            link = card.css_first("a")
            offers.append(
                Offer(
                    title=title,
                    discount_type=discount_type,
                    discount_value=discount_value,
                    description=description,
                    voucher_code=parse_voucher(full_text),
                    ends_at=parse_expiry(full_text),
                    source_url=self.support.absolute_url(link.attributes.get("href") if link else None),
                )
            )
        return offers

    async def cleanup(self) -> None:
        await self.support.cleanup()
