"""
Transform raw provider aircraft records into the canonical aircraft schema
"""

from typing import Dict, Any, Optional, List, Iterable
from datetime import datetime, timezone
import math
import logging

from pydantic import ValidationError as PydanticValidationError

from schemas.aircraft import CanonicalAircraft
from models.base import AircraftStatus
from core.exceptions import ValidationError

logger = logging.getLogger(__name__)


MARKET_STATUS_MAP = {
    "Sold": AircraftStatus.SOLD,
    "Under Contract": AircraftStatus.UNDER_CONTRACT,
    "Maintenance": AircraftStatus.MAINTENANCE,
    "Inspection": AircraftStatus.INSPECTION,
    "Withdrawn": AircraftStatus.WITHDRAWN,
}

# Raw field names tried in order for each derived field
YEAR_FIELDS = ("yearmfr", "yeardlv", "yeardelivered")
PRICE_FIELDS = ("askingprice", "asking")
LOCATION_FIELDS = ("basecity", "acbasecity", "acbasename")
TOTAL_TIME_FIELDS = ("aftt", "achours")
ENGINE_SERIAL_FIELDS = ("enginesn1", "enginesn2", "enginesn3", "enginesn4")

# Owner, operator and exclusive broker contacts embedded in the export
CONTACT_FIELDS = {
    "owner": {
        "company": "owrcompanyname",
        "first_name": "owrfname",
        "last_name": "owrlname",
        "phone": "owrphone1",
        "email": "owremail",
    },
    "operator": {
        "company": "oper1companyname",
        "first_name": "oper1fname",
        "last_name": "oper1lname",
        "phone": "oper1phone1",
        "email": "oper1email",
    },
    "broker": {
        "company": "excbrk1companyname",
        "first_name": "excbrk1fname",
        "last_name": "excbrk1lname",
        "phone": "excbrk1phone1",
        "email": "excbrk1email",
    },
}

DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%Y %H:%M:%S", "%Y-%m-%d")


def to_num(value: Any) -> Optional[float]:
    """
    Coerce a loosely-typed provider value to a number.

    None and empty strings are absent (not zero). Booleans, non-numeric
    strings, NaN and infinity are absent as well.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def to_year(value: Any) -> Optional[int]:
    """Coerce to a year; only integral values in (1900, 3000) exclusive are kept"""
    number = to_num(value)
    if number is None or not number.is_integer():
        return None
    if 1900 < number < 3000:
        return int(number)
    return None


def truthy(value: Any) -> bool:
    """Provider booleans: "Y", "True" and True are true, everything else is false"""
    return value is True or value == "Y" or value == "True"


def first_present(record: Dict[str, Any], fields: Iterable[str], coerce=None) -> Any:
    """Return the first field value that is present (after optional coercion)"""
    for field in fields:
        value = record.get(field)
        if coerce is not None:
            value = coerce(value)
        elif isinstance(value, str):
            value = value.strip() or None
        if value is not None:
            return value
    return None


def derive_status(for_sale: bool, market_status: Optional[str]) -> AircraftStatus:
    """For-sale wins; otherwise map the market status text, defaulting to AVAILABLE"""
    if for_sale:
        return AircraftStatus.AVAILABLE
    if market_status:
        return MARKET_STATUS_MAP.get(market_status.strip(), AircraftStatus.AVAILABLE)
    return AircraftStatus.AVAILABLE


class AircraftNormalizer:
    """
    Normalize provider export records into CanonicalAircraft.

    Handles:
    - Numeric, year and boolean coercion
    - Field fallback chains
    - Status derivation
    - Retaining the raw payload

    Pure and deterministic: no I/O, the input mapping is never mutated.
    """

    def normalize(self, raw_record: Dict[str, Any]) -> CanonicalAircraft:
        """
        Normalize one raw record.

        Returns:
            Validated CanonicalAircraft

        Raises:
            ValidationError: Payload is not a mapping, has no identity key,
                or fails schema validation
        """
        if not isinstance(raw_record, dict):
            raise ValidationError(
                "Aircraft record is not an object",
                context={"record_type": type(raw_record).__name__}
            )

        for_sale = truthy(raw_record.get("forsale"))
        market_status = self._clean_str(raw_record.get("marketstatus"))

        provider_id = to_num(raw_record.get("aircraftid", raw_record.get("id")))

        try:
            aircraft = CanonicalAircraft(
                provider_aircraft_id=int(provider_id) if provider_id is not None and provider_id.is_integer() else None,
                registration=raw_record.get("regnbr"),
                serial_number=self._clean_str(raw_record.get("sernbr")),
                manufacturer=raw_record.get("make"),
                model=raw_record.get("model"),
                year=first_present(raw_record, YEAR_FIELDS, coerce=to_year),
                year_manufactured=to_year(raw_record.get("yearmfr")),
                year_delivered=first_present(raw_record, YEAR_FIELDS[1:], coerce=to_year),
                price=first_present(raw_record, PRICE_FIELDS, coerce=to_num),
                asking_price=to_num(raw_record.get("askingprice")),
                currency="USD",
                for_sale=for_sale,
                market_status=market_status,
                status=derive_status(for_sale, market_status),
                date_listed=self._parse_datetime(raw_record.get("listdate")),
                exclusive=truthy(raw_record.get("exclusive")),
                leased=truthy(raw_record.get("leased")),
                location=first_present(raw_record, LOCATION_FIELDS),
                base_city=raw_record.get("basecity"),
                base_state=raw_record.get("basestate"),
                base_country=raw_record.get("basecountry"),
                base_airport_id=self._clean_str(raw_record.get("baseairportid")),
                base_icao_code=raw_record.get("baseicaocode"),
                base_iata_code=raw_record.get("baseiata"),
                total_time_hours=first_present(raw_record, TOTAL_TIME_FIELDS, coerce=to_num),
                estimated_aftt=to_num(raw_record.get("estaftt")),
                engine_serials=self._engine_serials(raw_record),
                avionics=raw_record.get("acavionics"),
                passengers=self._to_int(raw_record.get("acpassengers")),
                notes=raw_record.get("acnotes"),
                photos=self._photos(raw_record.get("acphotos")),
                contact_info=self._contacts(raw_record),
                raw_data=dict(raw_record),
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Aircraft record failed schema validation",
                context={
                    "aircraft_id": raw_record.get("aircraftid", raw_record.get("id")),
                    "field_errors": [err.get("loc") for err in e.errors()],
                },
                original_exception=e
            )

        if not aircraft.identity_keys:
            raise ValidationError(
                "Aircraft record has no identity key",
                context={"fields": sorted(raw_record.keys())[:20]}
            )

        return aircraft

    def normalize_many(self, raw_records: List[Dict[str, Any]]):
        """
        Normalize a list of records, isolating per-record failures.

        Returns:
            (aircraft, errors) where errors is a list of error detail dicts
        """
        normalized: List[CanonicalAircraft] = []
        errors: List[Dict[str, Any]] = []

        for index, raw in enumerate(raw_records):
            try:
                normalized.append(self.normalize(raw))
            except ValidationError as e:
                error_detail = {
                    "phase": "normalization",
                    "record_index": index,
                    "error_type": type(e).__name__,
                    "error_message": e.message,
                }
                errors.append(error_detail)
                logger.warning(
                    f"Normalization failed for record {index}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )

        return normalized, errors

    @staticmethod
    def _clean_str(value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @staticmethod
    def _to_int(value: Any) -> Optional[int]:
        number = to_num(value)
        if number is None:
            return None
        return int(number)

    @staticmethod
    def _engine_serials(record: Dict[str, Any]) -> List[str]:
        serials = []
        for field in ENGINE_SERIAL_FIELDS:
            value = record.get(field)
            if value is not None and str(value).strip():
                serials.append(str(value).strip())
        return serials

    @staticmethod
    def _photos(value: Any) -> List[str]:
        """Listing photos arrive as a single URL, a list of URLs or a list of objects"""
        if value is None:
            return []
        if isinstance(value, str):
            return [value.strip()] if value.strip() else []
        photos = []
        if isinstance(value, list):
            for item in value:
                if isinstance(item, str) and item.strip():
                    photos.append(item.strip())
                elif isinstance(item, dict):
                    url = item.get("url") or item.get("imageurl") or item.get("imageUrl")
                    if url:
                        photos.append(str(url))
        return photos

    @staticmethod
    def _contacts(record: Dict[str, Any]) -> Dict[str, Any]:
        contacts = {}
        for role, fields in CONTACT_FIELDS.items():
            entry = {
                key: str(record[raw_key]).strip()
                for key, raw_key in fields.items()
                if record.get(raw_key) not in (None, "")
            }
            if entry:
                contacts[role] = entry
        return contacts

    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        """Safely parse ISO 8601 or US-style provider dates"""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value
        text = str(value).strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
