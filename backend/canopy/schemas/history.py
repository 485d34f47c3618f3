"""
Canopy Backend - History Request/Response Schemas
===================================================

What:  Pydantic models for the /api/subjects/{id}/history endpoints.
Why:   Requests are only checked for JSON types and unknown keys here. The
       business rules (date required, non-negative measurements, label
       length) live in the ledger so that they apply to every caller.
       Schema failures and ledger rules both answer 400 validation_error.

Response shape notes:
    - Entries are serialized from their stored document, and routes use
      response_model_exclude_unset, so updatedBy/updatedAt appear only on
      entries that were edited (as in the store).
    - Stats are serialized with response_model_exclude_none: absent blocks
      (height, diameter, byYear averages) are omitted, not null.
"""

from typing import Dict, List, Optional

from pydantic import ConfigDict, Field

from canopy.ledger.entry import HistoryEntry
from canopy.schemas.common import CamelModel


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class HistoryEntryCreate(CamelModel):
    """
    Body of POST /api/subjects/{id}/history.

    `date` is optional at the schema level so a missing date is reported by
    the ledger with field "date". Unknown keys are rejected.
    """
    model_config = ConfigDict(extra="forbid")

    date: Optional[str] = Field(default=None, description="Observation date (ISO 8601)")
    height: Optional[float] = Field(default=None, description="Height, non-negative")
    diameter: Optional[float] = Field(default=None, description="Diameter, non-negative")
    health: Optional[str] = Field(default=None, description="Short health label")
    notes: Optional[str] = Field(default=None, description="Free-text notes")


class HistoryEntryPatch(CamelModel):
    """
    Body of PUT /api/subjects/{id}/history/{year}/{timestamp}.

    Partial update: only the keys the client actually sent are applied
    (the route dumps with exclude_unset). Sending null clears a field,
    except `date`, which the ledger refuses to clear.
    """
    model_config = ConfigDict(extra="forbid")

    date: Optional[str] = None
    height: Optional[float] = None
    diameter: Optional[float] = None
    health: Optional[str] = None
    notes: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class HistoryEntryOut(CamelModel):
    date: str
    timestamp: int
    height: Optional[float] = None
    diameter: Optional[float] = None
    health: Optional[str] = None
    notes: Optional[str] = None
    added_by: Optional[str] = None
    added_at: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> "HistoryEntryOut":
        # Validating the stored document keeps "set" == "present in the store"
        return cls.model_validate(entry.to_document())


def history_page(buckets: Dict[str, List[HistoryEntry]]) -> Dict[str, List[HistoryEntryOut]]:
    """Convert a Ledger.query() result into its response shape."""
    return {
        year: [HistoryEntryOut.from_entry(entry) for entry in entries]
        for year, entries in buckets.items()
    }


class HistoryEntryMutationResponse(CamelModel):
    """Returned by add (201) and edit (200): the stored entry and its bucket."""
    message: str = Field(description="Human-readable success message")
    entry: HistoryEntryOut
    year: str = Field(description="Year bucket the entry now lives in")


class MessageResponse(CamelModel):
    message: str


class MeasurementSummaryOut(CamelModel):
    count: int
    min: float
    max: float
    avg: float


class DateRangeOut(CamelModel):
    min: str
    max: str


class YearSummaryOut(CamelModel):
    count: int
    avg_height: Optional[float] = None
    avg_diameter: Optional[float] = None


class HistoryStatsResponse(CamelModel):
    """
    Aggregated statistics, built from ledger.stats.HistoryStats.

    Example (no year filter):
        {"totalEntries": 3, "years": ["2023", "2024"],
         "dateRange": {"min": "2023-03-01T00:00:00.000Z", "max": "2024-01-01T00:00:00.000Z"},
         "height": {"count": 3, "min": 5.0, "max": 9.0, "avg": 7.0},
         "healthDistribution": {},
         "byYear": {"2023": {"count": 2, "avgHeight": 6.0},
                    "2024": {"count": 1, "avgHeight": 9.0}}}
    """
    total_entries: int
    years: List[str]
    date_range: Optional[DateRangeOut] = None
    height: Optional[MeasurementSummaryOut] = None
    diameter: Optional[MeasurementSummaryOut] = None
    health_distribution: Optional[Dict[str, int]] = None
    by_year: Optional[Dict[str, YearSummaryOut]] = None
    message: Optional[str] = None
