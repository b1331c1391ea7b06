"""
Pydantic schema for the canonical aircraft record with validation
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import AircraftStatus

# Identity keys in resolution priority order
IDENTITY_FIELDS = ("provider_aircraft_id", "registration", "serial_number")


class CanonicalAircraft(BaseModel):
    """
    Canonical aircraft record produced by the normalizer.

    Ensures:
    - Blank identity strings are treated as absent
    - Types are correct
    - The provider payload is carried along untouched in raw_data
    """

    model_config = ConfigDict(validate_assignment=True)

    # Identity
    provider_aircraft_id: Optional[int] = None
    registration: Optional[str] = Field(None, max_length=50)
    serial_number: Optional[str] = Field(None, max_length=100)

    # Descriptive
    manufacturer: str = "Unknown"
    model: str = "Unknown"
    year: Optional[int] = None
    year_manufactured: Optional[int] = None
    year_delivered: Optional[int] = None

    # Commercial
    price: Optional[float] = None
    asking_price: Optional[float] = None
    currency: str = "USD"
    for_sale: bool = False
    market_status: Optional[str] = None
    status: AircraftStatus = AircraftStatus.AVAILABLE
    date_listed: Optional[datetime] = None
    exclusive: bool = False
    leased: bool = False

    # Location
    location: Optional[str] = None
    base_city: Optional[str] = None
    base_state: Optional[str] = None
    base_country: Optional[str] = None
    base_airport_id: Optional[str] = None
    base_icao_code: Optional[str] = None
    base_iata_code: Optional[str] = None

    # Utilization
    total_time_hours: Optional[float] = None
    estimated_aftt: Optional[float] = None
    engine_serials: List[str] = Field(default_factory=list)

    avionics: Optional[str] = None
    passengers: Optional[int] = None
    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list)

    # Owner / operator / broker contacts from the listing
    contact_info: Dict[str, Any] = Field(default_factory=dict)

    raw_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "registration", "serial_number", "location", "base_city", "base_state",
        "base_country", "base_airport_id", "base_icao_code", "base_iata_code",
        "market_status", "avionics", "notes",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        """Strip strings; empty strings mean absent"""
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("manufacturer", "model", mode="before")
    @classmethod
    def default_unknown(cls, v):
        if v is None or not str(v).strip():
            return "Unknown"
        return str(v).strip()

    @property
    def identity_keys(self) -> Dict[str, Any]:
        """Present identity keys, highest priority first"""
        return {
            name: getattr(self, name)
            for name in IDENTITY_FIELDS
            if getattr(self, name) is not None
        }

    @property
    def display_key(self) -> str:
        """Short label for logs and error details"""
        for name, value in self.identity_keys.items():
            return f"{name}={value}"
        return "unidentified"
