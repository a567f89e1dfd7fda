"""SQLAlchemy database models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class FlexType(str, Enum):
    FIXED = "FIXED"
    RANGE = "RANGE"
    FLEXI = "FLEXI"


class PeakTolerance(str, Enum):
    OFFPEAK_ONLY = "OFFPEAK_ONLY"
    MIXED = "MIXED"
    PEAK_OK = "PEAK_OK"


class Availability(str, Enum):
    AVAILABLE = "AVAILABLE"
    SOLD_OUT = "SOLD_OUT"
    UNKNOWN = "UNKNOWN"


class RunType(str, Enum):
    SEARCH = "SEARCH"
    OFFERS_PAGE = "OFFERS_PAGE"
    DEAL_SOURCE = "DEAL_SOURCE"
    MANUAL_PREVIEW = "MANUAL_PREVIEW"


class RunStatus(str, Enum):
    OK = "OK"
    ERROR = "ERROR"
    BLOCKED = "BLOCKED"
    PARSE_FAILED = "PARSE_FAILED"


class ProviderStatus(str, Enum):
    """Failure taxonomy recorded on a fetch run."""

    TIMEOUT = "TIMEOUT"
    BLOCKED = "BLOCKED"
    PARSE_FAILED = "PARSE_FAILED"
    FETCH_FAILED = "FETCH_FAILED"


class InsightType(str, Enum):
    LOWEST_IN_X_DAYS = "LOWEST_IN_X_DAYS"
    PRICE_DROP_PERCENT = "PRICE_DROP_PERCENT"
    RISK_RISING = "RISK_RISING"
    NEW_CAMPAIGN_DETECTED = "NEW_CAMPAIGN_DETECTED"
    VOUCHER_SPOTTED = "VOUCHER_SPOTTED"


class AlertStatus(str, Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"
    DISMISSED = "DISMISSED"


class DealSource(str, Enum):
    PROVIDER_OFFERS = "PROVIDER_OFFERS"


class DiscountType(str, Enum):
    PERCENT_OFF = "PERCENT_OFF"
    FIXED_OFF = "FIXED_OFF"
    SALE_PRICE = "SALE_PRICE"
    PERK = "PERK"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class User(Base):
    """Account owning holiday profiles. Managed outside the pipeline."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    profiles: Mapped[list["HolidayProfile"]] = relationship(
        "HolidayProfile", back_populates="user", cascade="all, delete-orphan"
    )


class HolidayProfile(Base):
    """A user's holiday intent. Read-only to the monitoring pipeline."""

    __tablename__ = "holiday_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    adults: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    children: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    flex_type: Mapped[str] = mapped_column(String(16), default=FlexType.FIXED.value, nullable=False)
    date_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    date_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    nights_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    nights_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pets: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    min_bedrooms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accommodation_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    peak_tolerance: Mapped[str] = mapped_column(
        String(16), default=PeakTolerance.MIXED.value, nullable=False
    )
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    park_ids: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    providers: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    check_frequency_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="profiles")
    fingerprints: Mapped[list["Fingerprint"]] = relationship(
        "Fingerprint", back_populates="profile"
    )


class Fingerprint(Base):
    """Canonical recurring search for one (profile, provider) pair."""

    __tablename__ = "fingerprints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("holiday_profiles.id"), nullable=False
    )
    provider_code: Mapped[str] = mapped_column(String(32), nullable=False)
    canonical_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    canonical_payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    check_frequency_hours: Mapped[int] = mapped_column(Integer, default=48, nullable=False)
    last_scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    profile: Mapped["HolidayProfile"] = relationship("HolidayProfile", back_populates="fingerprints")

    __table_args__ = (
        UniqueConstraint(
            "profile_id", "provider_code", "canonical_hash", name="uq_fingerprint_profile_provider_hash"
        ),
        Index("ix_fingerprints_enabled_last_scheduled", "enabled", "last_scheduled_at"),
    )


class FetchRun(Base):
    """Audit record of one scrape attempt."""

    __tablename__ = "fetch_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fingerprint_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("fingerprints.id"), nullable=True, index=True
    )
    provider_code: Mapped[str] = mapped_column(String(32), nullable=False)
    run_type: Mapped[str] = mapped_column(String(32), nullable=False)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # Set once when finished
    provider_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    http_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    candidates_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    matched_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Observation(Base):
    """One matched price data point. Append-only."""

    __tablename__ = "observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fingerprint_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("fingerprints.id"), nullable=False, index=True
    )
    fetch_run_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("fetch_runs.id"), nullable=True
    )
    series_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    stay_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    stay_nights: Mapped[int] = mapped_column(Integer, nullable=False)
    price_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_per_night: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    availability: Mapped[str] = mapped_column(
        String(16), default=Availability.UNKNOWN.value, nullable=False
    )
    accom_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    observed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Insight(Base):
    """Detected pattern in a series' observation history."""

    __tablename__ = "insights"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fingerprint_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("fingerprints.id"), nullable=False, index=True
    )
    series_key: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Alert(Base):
    """Notification for a user about an insight."""

    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    insight_id: Mapped[int] = mapped_column(Integer, ForeignKey("insights.id"), nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), default=AlertStatus.QUEUED.value, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Deal(Base):
    """Promotional offer seen on a provider's offers page."""

    __tablename__ = "deals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_code: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(
        String(32), default=DealSource.PROVIDER_OFFERS.value, nullable=False
    )
    source_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    discount_type: Mapped[str] = mapped_column(String(16), nullable=False)
    discount_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    voucher_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ends_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, default=0.8, nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("provider_code", "source_ref", name="uq_deal_provider_source_ref"),
    )
