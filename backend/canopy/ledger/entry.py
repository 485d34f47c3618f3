"""
Canopy Backend - History Entry Value Record
=============================================

What:  The HistoryEntry record plus the date and field normalization rules
       shared by every ledger operation.
Why:   Stored documents, request payloads and test fixtures all describe an
       entry slightly differently (date-only strings, offsets, ints vs floats).
       Normalizing in one place keeps dedup math and bucket keys consistent.

Canonical date format:
    YYYY-MM-DDTHH:MM:SS.mmmZ (UTC, millisecond precision). Inputs without an
    offset are taken as UTC. The bucket year is the UTC calendar year.

Persisted shape (camelCase, one object per entry):
    {"date": "...", "height": 5.2, "diameter": null, "health": "good",
     "notes": null, "timestamp": 1700000000000,
     "addedBy": "user:1", "addedAt": "...",
     "updatedBy": "user:2", "updatedAt": "..."}    ← last two only after edits
"""

import math
from dataclasses import dataclass
from datetime import date as date_type
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from canopy.exceptions import ValidationError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MS = timedelta(milliseconds=1)


# ══════════════════════════════════════════════════════════════════════════
# Date helpers
# ══════════════════════════════════════════════════════════════════════════

def parse_event_date(value: Any, field: str = "date") -> datetime:
    """
    Parse a client or stored date into an aware UTC datetime (ms precision).

    Accepts datetime, date, or ISO-8601 strings ("2024-05-01",
    "2024-05-01T10:00:00+02:00", "2024-05-01T08:00:00.000Z").

    Raises:
        ValidationError: value missing or not a recognizable date.
    """
    if value is None or value == "":
        raise ValidationError(message="The date is required", field=field)

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date_type):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except (ValueError, OverflowError):
            raise ValidationError(
                message=f"'{value}' is not a valid ISO-8601 date",
                field=field,
            )
    else:
        raise ValidationError(message="The date must be an ISO-8601 string", field=field)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        parsed = parsed.astimezone(timezone.utc)
    except OverflowError:
        # e.g. 0001-01-01T00:00:00+01:00 has no UTC representation
        raise ValidationError(message=f"'{value}' is outside the supported date range", field=field)
    return parsed.replace(microsecond=(parsed.microsecond // 1000) * 1000)


def format_iso(moment: datetime) -> str:
    """Render an aware datetime in the canonical ...SS.mmmZ form."""
    utc = moment.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_epoch_ms(moment: datetime) -> int:
    return (moment.astimezone(timezone.utc) - EPOCH) // ONE_MS


def year_label(year: int) -> str:
    return f"{year:04d}"


def parse_year_label(value: Any) -> Optional[int]:
    """
    Turn a bucket key ("2024", 2024) into an int, or None when it can't be one.

    None is used by callers as "no such bucket" rather than as an error:
    a malformed year in a URL simply addresses nothing.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit() and len(value) <= 4:
        return int(value)
    return None


# ══════════════════════════════════════════════════════════════════════════
# Field normalization
# ══════════════════════════════════════════════════════════════════════════

def normalize_measurement(field: str, value: Any) -> Optional[float]:
    """
    Validate an optional non-negative measurement (height, diameter).

    Zero is a real measurement and is kept; only None means "not measured".
    """
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(message=f"The {field} must be a number", field=field)
    if not math.isfinite(value) or value < 0:
        raise ValidationError(message=f"The {field} must be a positive number", field=field)
    return value


def normalize_label(value: Any, max_length: int, field: str = "health") -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(message=f"The {field} must be a string", field=field)
    label = value.strip()
    if len(label) > max_length:
        raise ValidationError(
            message=f"The {field} label must be at most {max_length} characters",
            field=field,
            context={"max_length": max_length},
        )
    return label or None


def normalize_notes(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(message="The notes must be text", field="notes")
    return value


# ══════════════════════════════════════════════════════════════════════════
# Value record
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class HistoryEntry:
    """
    One measurement event for a subject.

    Frozen: edits produce a new record via dataclasses.replace(), so an entry
    handed out by the ledger can never change under the caller.

    Attributes:
        date:       When the observation happened (aware UTC datetime)
        timestamp:  Creation time in epoch ms; with the year it addresses the entry
        height / diameter:  Optional non-negative measurements
        health:     Optional short label ("good", "declining", ...)
        notes:      Optional free text
        added_by / added_at / updated_by / updated_at:  Authorship stamps
    """

    date: datetime
    timestamp: int
    height: Optional[float] = None
    diameter: Optional[float] = None
    health: Optional[str] = None
    notes: Optional[str] = None
    added_by: Optional[str] = None
    added_at: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def year(self) -> int:
        return self.date.year

    @property
    def date_ms(self) -> int:
        return to_epoch_ms(self.date)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the persisted camelCase shape."""
        document: Dict[str, Any] = {
            "date": format_iso(self.date),
            "height": self.height,
            "diameter": self.diameter,
            "health": self.health,
            "notes": self.notes,
            "timestamp": self.timestamp,
            "addedBy": self.added_by,
            "addedAt": self.added_at,
        }
        if self.updated_by is not None or self.updated_at is not None:
            document["updatedBy"] = self.updated_by
            document["updatedAt"] = self.updated_at
        return document

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "HistoryEntry":
        """
        Rebuild an entry from its stored shape.

        Stored values are trusted apart from the date, which is re-parsed so
        that older documents written with other ISO variants still sort right.
        """
        return cls(
            date=parse_event_date(data.get("date")),
            timestamp=int(data.get("timestamp") or 0),
            height=data.get("height"),
            diameter=data.get("diameter"),
            health=data.get("health"),
            notes=data.get("notes"),
            added_by=data.get("addedBy"),
            added_at=data.get("addedAt"),
            updated_by=data.get("updatedBy"),
            updated_at=data.get("updatedAt"),
        )
