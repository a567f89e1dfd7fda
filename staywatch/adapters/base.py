"""Provider adapter interface and the values adapters exchange."""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from staywatch.db.models import Availability, DiscountType


@dataclass(frozen=True)
class UserIntent:
    """Search intent derived from a holiday profile for one provider."""

    adults: int
    children: int
    date_window_start: date
    date_window_end: date
    nights_min: int
    nights_max: int
    pets: bool = False
    min_bedrooms: int = 0
    accommodation_type: Optional[str] = None
    peak_tolerance: Optional[str] = None
    region: Optional[str] = None
    park_ids: tuple[str, ...] = ()

    @property
    def stay_start(self) -> date:
        """Arrival date the fingerprint targets."""
        return self.date_window_start

    @property
    def stay_nights(self) -> int:
        return self.nights_min

    @property
    def stay_end(self) -> date:
        return self.stay_start + timedelta(days=self.stay_nights)


@dataclass
class RawCandidate:
    """One stay extracted from a provider page.

    Price, date and nights are required; anything else the provider did not
    state explicitly stays None rather than being guessed.
    """

    stay_start_date: date
    stay_nights: int
    price_total: Decimal
    availability: Availability = Availability.UNKNOWN
    accom_type: Optional[str] = None
    accom_type_id: Optional[str] = None
    bedrooms: Optional[int] = None
    pets_allowed: Optional[bool] = None
    park_id: Optional[str] = None
    property_name: Optional[str] = None
    location: Optional[str] = None
    source_url: Optional[str] = None

    @property
    def price_per_night(self) -> Decimal:
        if self.stay_nights <= 0:
            return self.price_total
        return (self.price_total / self.stay_nights).quantize(Decimal("0.01"))


@dataclass
class Offer:
    """Promotional offer from a provider's offers page."""

    title: str
    discount_type: DiscountType
    discount_value: Optional[Decimal] = None
    description: Optional[str] = None
    voucher_code: Optional[str] = None
    ends_at: Optional[date] = None
    source_url: Optional[str] = None


@dataclass
class SearchStats:
    """How the last search was retrieved, for preview compliance reporting."""

    robots_allowed: bool = True
    playwright_used: bool = False
    rate_limited: bool = False
    fetch_ms: int = 0
    parse_ms: int = 0
    extra: dict = field(default_factory=dict)


@runtime_checkable
class ProviderAdapter(Protocol):
    """Capability every provider integration implements."""

    code: str
    name: str
    base_url: str

    def is_enabled(self) -> bool:
        ...

    async def search(
        self,
        intent: UserIntent,
        automated: bool = True,
        stats: Optional[SearchStats] = None,
    ) -> list[RawCandidate]:
        ...

    async def fetch_offers(self) -> list[Offer]:
        ...

    def build_search_url(self, intent: UserIntent) -> str:
        ...

    def build_offers_url(self) -> str:
        ...

    def parse_search_results(self, html: str, intent: UserIntent) -> list[RawCandidate]:
        ...

    def parse_offers(self, html: str) -> list[Offer]:
        ...

    async def cleanup(self) -> None:
        ...
