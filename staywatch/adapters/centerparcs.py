"""Center Parcs adapter."""

import logging
from typing import Optional
from urllib.parse import urlencode

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
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

VILLAGES = {
    "sherwood": "Sherwood Forest",
    "elveden": "Elveden Forest",
    "longleat": "Longleat Forest",
    "whinfell": "Whinfell Forest",
    "woburn": "Woburn Forest",
}

RESULT_SELECTORS = [".accommodation-card", ".lodge-card", ".result-item"]
PRICE_SELECTORS = [".price", ".total-price", ".from-price"]
DATE_SELECTORS = [".date", ".arrival-date", ".check-in"]
NIGHTS_SELECTORS = [".nights", ".duration", ".stay-length"]
SOLD_OUT_SELECTORS = [".sold-out", ".unavailable", ".fully-booked"]
TYPE_SELECTORS = [".lodge-type", ".accommodation-type"]
BEDROOM_SELECTORS = [".bedrooms", ".sleeps"]
PET_SELECTORS = [".pet-friendly", ".pets"]
OFFER_SELECTORS = [".offer-card", ".deal-item", ".special-offer"]


def village_for(region: Optional[str]) -> Optional[str]:
    q = (region or "").lower()
    for key, village in VILLAGES.items():
        if key in q:
            return village
    return None


class CenterParcsAdapter:
    """
    Center Parcs availability sits behind a booking form.

    Results cards state their own arrival date and duration; cards where
    either cannot be parsed are dropped.
    """

    code = "centerparcs"
    name = "Center Parcs"

    def __init__(self, base_url: str = "https://www.centerparcs.co.uk", support: Optional[ProviderSupport] = None):
        self.base_url = base_url
        self.support = support or ProviderSupport(self.code, base_url)

    def is_enabled(self) -> bool:
        return self.support.is_enabled()

    def build_search_url(self, intent: UserIntent) -> str:
        params = {}
        village = village_for(intent.region)
        if village:
            params["village"] = village
        params.update({
            "arrival": intent.stay_start.isoformat(),
            "nights": intent.stay_nights,
            "adults": intent.adults,
            "children": intent.children,
        })
        if intent.pets:
            params["pets"] = 1
        return f"{self.base_url}/breaks?{urlencode(params)}"

    def build_offers_url(self) -> str:
        return f"{self.base_url}/offers"

    async def search(
        self,
        intent: UserIntent,
        automated: bool = True,
        stats: Optional[SearchStats] = None,
    ) -> list[RawCandidate]:
        async def fill_booking_form(page: Page) -> None:
            await self._fill_booking_form(page, intent)

        return await self.support.search_page(
            self.build_search_url(intent),
            lambda html: self.parse_search_results(html, intent),
            automated=automated,
            stats=stats,
            browser_first=True,
            wait_selector=", ".join(RESULT_SELECTORS),
            page_action=fill_booking_form,
        )

    async def _fill_booking_form(self, page: Page, intent: UserIntent) -> None:
        """Fill and submit the booking bar when the page shows it instead of results."""
        if await page.query_selector(", ".join(RESULT_SELECTORS)):
            return
        try:
            await page.wait_for_selector(".booking-bar, #booking-form", timeout=5000)
            village = village_for(intent.region)
            if village:
                await page.select_option('select[name="village"], #village-select', label=village)
            arrival = await page.query_selector('input[name="arrival"], #arrival-date')
            if arrival:
                await arrival.fill(intent.stay_start.isoformat())
            nights = await page.query_selector('select[name="nights"], #nights')
            if nights:
                await nights.select_option(value=str(intent.stay_nights))
            adults = await page.query_selector('input[name="adults"], #adults')
            if adults:
                await adults.fill(str(intent.adults))
            if intent.children:
                children = await page.query_selector('input[name="children"], #children')
                if children:
                    await children.fill(str(intent.children))
            submit = await page.query_selector('button[type="submit"], .search-button, .book-now')
            if submit:
                await submit.click()
                await page.wait_for_load_state("networkidle", timeout=10000)
        except PlaywrightError as e:
            logger.warning(f"Could not complete Center Parcs booking form: {e}")

    async def fetch_offers(self) -> list[Offer]:
        return await self.support.offers_page(self.build_offers_url(), self.parse_offers)

    def parse_search_results(self, html: str, intent: UserIntent) -> list[RawCandidate]:
        tree = HTMLParser(html)
        results = []

        for card in select_all(tree, RESULT_SELECTORS):
            price = extract_price(text_of(first_match(card, PRICE_SELECTORS)))
            if price is None:
                continue

            stay_date = parse_date(
                text_of(first_match(card, DATE_SELECTORS)), default_year=intent.stay_start.year
            )
            if stay_date is None:
                logger.debug("Skipping Center Parcs card: could not parse stay date")
                continue

            nights = parse_nights(text_of(first_match(card, NIGHTS_SELECTORS)))
            if nights is None:
                logger.debug("Skipping Center Parcs card: could not parse nights")
                continue

            sold_out = first_match(card, SOLD_OUT_SELECTORS) is not None

            pets_allowed = None
            pets_text = text_of(first_match(card, PET_SELECTORS))
            if pets_text:
                lowered = pets_text.lower()
                if "no pet" in lowered or "no dog" in lowered:
                    pets_allowed = False
                elif "pet" in lowered or "dog" in lowered:
                    pets_allowed = True

            link = card.css_first("a")
            results.append(
                RawCandidate(
                    stay_start_date=stay_date,
                    stay_nights=nights,
                    price_total=price,
                    availability=Availability.SOLD_OUT if sold_out else Availability.AVAILABLE,
                    accom_type=text_of(first_match(card, TYPE_SELECTORS)),
                    bedrooms=parse_bedrooms(text_of(first_match(card, BEDROOM_SELECTORS))),
                    pets_allowed=pets_allowed,
                    park_id=village_for(intent.region),
                    source_url=self.support.absolute_url(link.attributes.get("href") if link else None),
                )
            )

        return results

    def parse_offers(self, html: str) -> list[Offer]:
        tree = HTMLParser(html)
        offers = []
        for card in select_all(tree, OFFER_SELECTORS):
            title = text_of(first_match(card, [".offer-title", "h2", "h3"]))
            if not title:
                continue
            discount_text = text_of(first_match(card, [".discount", ".save", ".offer-value"])) or ""
            discount_type, discount_value = parse_discount(discount_text or title)
            expiry_text = text_of(first_match(card, [".valid-until", ".expires", ".offer-ends"]))
            offers.append(
                Offer(
                    title=title,
                    discount_type=discount_type,
                    discount_value=discount_value,
                    description=text_of(card.css_first("p")),
                    voucher_code=text_of(first_match(card, [".voucher-code", ".promo-code"])),
                    ends_at=parse_expiry(f"ends {expiry_text}") if expiry_text else None,
                    source_url=self.build_offers_url(),
                )
            )
        return offers

    async def cleanup(self) -> None:
        await self.support.cleanup()
