import base64
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

import gspread
from google.oauth2 import service_account

from errors import MalformedReadingError, StoreFetchError
from thresholds import MAHC_STANDARDS, normalize_parameter

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets", "https://www.googleapis.com/auth/drive"]

# Sheet timestamps are written the same way the test-entry form logs them.
SHEET_TIME_FORMAT = "%m/%d/%Y %H:%M:%S"

_FIELD_ALIASES = {
    "facility_id": ("facility_id", "pool_id", "poolid", "facility"),
    "facility_name": ("facility_name", "pool_name", "poolname", "name"),
    "timestamp": ("timestamp", "time", "tested_at", "date"),
    "technician": ("technician", "technician_id", "tech"),
    "reading_id": ("id", "reading_id", "test_id"),
}

# Header words that mark a column as a chemical reading.
_CHEMICAL_WORDS = {
    "chlorine", "ph", "alkalinity", "acid", "cyanuric", "calcium", "hardness",
    "temperature", "temp", "stabilizer",
}


@dataclass(frozen=True)
class ChemicalReading:
    """One chemical test result. Produced outside the engine and never mutated."""
    facility_id: Optional[str]
    timestamp: Optional[datetime]
    facility_name: str = ""
    technician: str = ""
    values: Dict[str, float] = field(default_factory=dict)
    reading_id: Optional[str] = None


def parse_timestamp(raw):
    """Parse an ISO-8601 or sheet-formatted timestamp. Naive values are taken as UTC."""
    if isinstance(raw, datetime):
        parsed = raw
    else:
        text = str(raw).strip()
        if not text:
            raise ValueError("empty timestamp")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = datetime.strptime(text, SHEET_TIME_FORMAT)
    return as_utc(parsed)


def as_utc(moment):
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def _header_key(header):
    return str(header).strip().lower().replace(" ", "_").replace("-", "_")


def _pick(normalized, name):
    for alias in _FIELD_ALIASES[name]:
        value = normalized.get(alias)
        if value not in (None, ""):
            return value
    return None


def reading_from_row(row):
    """Build a ChemicalReading from one sheet row (a header -> cell mapping).

    Raises MalformedReadingError when the facility id or timestamp is missing
    or unparseable. Chemical cells that are blank, non-numeric or not finite are dropped.
    """
    normalized = {_header_key(k): v for k, v in row.items()}

    facility_id = _pick(normalized, "facility_id")
    if facility_id is None:
        raise MalformedReadingError("reading has no facility id", row)
    raw_ts = _pick(normalized, "timestamp")
    if raw_ts is None:
        raise MalformedReadingError(f"reading for {facility_id} has no timestamp", row)
    try:
        timestamp = parse_timestamp(raw_ts)
    except ValueError:
        raise MalformedReadingError(f"reading for {facility_id} has a bad timestamp: {raw_ts!r}", row)

    values = {}
    for header, cell in row.items():
        key = normalize_parameter(header)
        if key not in MAHC_STANDARDS:
            key = normalize_parameter(_header_key(header))
        if key not in MAHC_STANDARDS:
            if _CHEMICAL_WORDS & set(_header_key(header).split("_")):
                logger.warning("Column %r matches no chemical standard, ignoring it", header)
            continue
        if cell in (None, ""):
            continue
        try:
            value = float(str(cell).replace(",", ""))
        except ValueError:
            logger.warning("Ignoring non-numeric %s=%r for facility %s", key, cell, facility_id)
            continue
        if not math.isfinite(value):
            logger.warning("Ignoring non-finite %s=%r for facility %s", key, cell, facility_id)
            continue
        values[key] = value

    reading_id = _pick(normalized, "reading_id")
    return ChemicalReading(
        facility_id=str(facility_id),
        timestamp=timestamp,
        facility_name=str(_pick(normalized, "facility_name") or facility_id),
        technician=str(_pick(normalized, "technician") or ""),
        values=values,
        reading_id=str(reading_id) if reading_id is not None else None,
    )


def check_reading(reading):
    if not reading.facility_id:
        raise MalformedReadingError("reading has no facility id", reading)
    if reading.timestamp is None:
        raise MalformedReadingError(f"reading for {reading.facility_id} has no timestamp", reading)
    return reading


def latest_per_facility(readings):
    """Return ``{facility_id: newest reading}``.

    Malformed readings are logged and left out. When two readings of a
    facility share a timestamp, the one later in input order wins.
    """
    latest = {}
    for reading in readings:
        try:
            check_reading(reading)
        except MalformedReadingError as e:
            logger.warning("Skipping malformed reading: %s", e)
            continue
        current = latest.get(reading.facility_id)
        if current is None or as_utc(reading.timestamp) >= as_utc(current.timestamp):
            latest[reading.facility_id] = reading
    return latest


def load_credentials(settings):
    """Service-account credentials from GOOGLE_CREDS_BASE64, else from the creds file."""
    if settings.google_creds_base64:
        creds_dict = json.loads(base64.b64decode(settings.google_creds_base64))
        return service_account.Credentials.from_service_account_info(creds_dict, scopes=SCOPES)
    return service_account.Credentials.from_service_account_file(settings.google_creds_file, scopes=SCOPES)


class SheetReadingStore:
    """Read-only view of the chemical test log kept in a Google Sheet."""

    def __init__(self, settings, worksheet=None):
        self.settings = settings
        self._worksheet = worksheet

    @property
    def worksheet(self):
        if self._worksheet is None:
            gc = gspread.authorize(load_credentials(self.settings))
            self._worksheet = gc.open(self.settings.readings_sheet).worksheet(self.settings.readings_tab)
        return self._worksheet

    def get_readings(self):
        try:
            rows = self.worksheet.get_all_records()
        except Exception as e:
            raise StoreFetchError(f"Could not read {self.settings.readings_sheet!r}: {e}") from e

        readings = []
        for row in rows:
            try:
                readings.append(reading_from_row(row))
            except MalformedReadingError as e:
                logger.warning("Skipping sheet row: %s", e)
        logger.debug("Fetched %d readings from %s", len(readings), self.settings.readings_sheet)
        return readings
