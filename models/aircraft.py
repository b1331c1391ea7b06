from sqlalchemy import (
    Column, String, Integer, BigInteger, Float, Boolean, DateTime, Enum,
    Text, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
import uuid
from models.base import Base, JSONType, AircraftStatus, utcnow


def _new_aircraft_id() -> str:
    return str(uuid.uuid4())


class Aircraft(Base):
    """
    Canonical aircraft record reconciled from the provider bulk export.

    Identity:
    - provider_aircraft_id, registration and serial_number are lookup keys
      checked in that order; none of them is the primary key because any of
      them may be missing in a given export
    - id is a freshly derived UUID assigned on create

    JSON blobs:
    - specifications, features, market_data, contact_info are shallow-merged
      on update (existing keys kept, incoming keys overwrite)
    - version is the optimistic concurrency column; a concurrent writer
      raises StaleDataError instead of silently losing a merge
    """
    __tablename__ = "aircraft"

    id = Column(String(36), primary_key=True, default=_new_aircraft_id)

    # Identity keys
    provider_aircraft_id = Column(BigInteger, nullable=True, index=True)
    registration = Column(String(50), nullable=True, index=True)
    serial_number = Column(String(100), nullable=True, index=True)

    # Descriptive
    manufacturer = Column(String(200), nullable=False, default="Unknown")
    model = Column(String(200), nullable=False, default="Unknown")
    year = Column(Integer, nullable=True)
    year_manufactured = Column(Integer, nullable=True)
    year_delivered = Column(Integer, nullable=True)

    # Commercial
    price = Column(Float, nullable=True)
    asking_price = Column(Float, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    for_sale = Column(Boolean, nullable=False, default=False)
    market_status = Column(String(100), nullable=True)
    status = Column(Enum(AircraftStatus), nullable=False, default=AircraftStatus.AVAILABLE, index=True)
    date_listed = Column(DateTime(timezone=True), nullable=True)
    exclusive = Column(Boolean, nullable=False, default=False)
    leased = Column(Boolean, nullable=False, default=False)

    # Location
    location = Column(String(200), nullable=True)
    base_city = Column(String(200), nullable=True)
    base_state = Column(String(100), nullable=True)
    base_country = Column(String(100), nullable=True)
    base_airport_id = Column(String(50), nullable=True)
    base_icao_code = Column(String(10), nullable=True)
    base_iata_code = Column(String(10), nullable=True)

    # Utilization
    total_time_hours = Column(Float, nullable=True)
    estimated_aftt = Column(Float, nullable=True)
    engine_serials = Column(JSONType, nullable=True)

    avionics = Column(Text, nullable=True)
    passengers = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    # Merged JSON blobs
    specifications = Column(JSONType, nullable=True)
    features = Column(JSONType, nullable=True)
    market_data = Column(JSONType, nullable=True)
    contact_info = Column(JSONType, nullable=True)
    tech_summary = Column(JSONType, nullable=True)

    # Verbatim provider payload
    raw_data = Column(JSONType, nullable=True)

    # Change detection and concurrency
    content_hash = Column(String(64), nullable=True)
    version = Column(Integer, nullable=False)

    # Sync bookkeeping
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_enriched_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    images = relationship(
        "AircraftImage",
        back_populates="aircraft",
        cascade="all, delete-orphan",
        order_by="AircraftImage.sort_order",
    )
    enrichments = relationship(
        "AircraftEnrichment",
        back_populates="aircraft",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_aircraft_make_model", "manufacturer", "model"),
        Index("idx_aircraft_for_sale", "for_sale", "status"),
    )


class AircraftEnrichment(Base):
    """
    One enrichment document per (aircraft, category).

    Each category is written as its own row so a partial enrichment only
    touches the categories that were fetched successfully.
    """
    __tablename__ = "aircraft_enrichments"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    aircraft_id = Column(String(36), ForeignKey("aircraft.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(50), nullable=False)
    payload = Column(JSONType, nullable=True)
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    aircraft = relationship("Aircraft", back_populates="enrichments")

    __table_args__ = (
        UniqueConstraint("aircraft_id", "category", name="uq_aircraft_enrichment_category"),
    )


class AircraftImage(Base):
    """Ordered image list for an aircraft; exactly one row is the hero image."""
    __tablename__ = "aircraft_images"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    aircraft_id = Column(String(36), ForeignKey("aircraft.id", ondelete="CASCADE"), nullable=False, index=True)

    url = Column(Text, nullable=False)
    thumbnail_url = Column(Text, nullable=True)
    image_type = Column(String(50), nullable=False, default="other")
    caption = Column(String(500), nullable=True)
    is_hero = Column(Boolean, nullable=False, default=False)
    is_placeholder = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    aircraft = relationship("Aircraft", back_populates="images")

    __table_args__ = (
        Index("idx_aircraft_image_order", "aircraft_id", "sort_order"),
    )
