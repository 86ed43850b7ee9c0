"""Fuel log kilometers, efficiency and cost per gallon."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from gdp_backoffice.errors import ValidationError
from gdp_backoffice.models import FuelLogEntry, RouteSegment
from gdp_backoffice.money import ZERO, to_decimal, total

Number = Decimal | int | float | str


def make_segment(
    start_km: Number, end_km: Number, description: str = "", segment_id: str = ""
) -> RouteSegment:
    """Build a trip segment; the end odometer must be past the start."""
    start = to_decimal(start_km)
    end = to_decimal(end_km)
    if end <= start:
        raise ValidationError(
            f"Segment end odometer ({end}) must be greater than start ({start})"
        )
    return RouteSegment(
        id=segment_id,
        description=description,
        start_km_odometer=start,
        end_km_odometer=end,
        segment_km=end - start,
    )


@dataclass(frozen=True)
class FuelEfficiency:
    total_km: Decimal
    efficiency_kmpg: Decimal | None
    cost_per_gallon: Decimal | None


def calculate_efficiency(
    segments: Sequence[RouteSegment],
    refueled: bool = False,
    gallons: Number | None = None,
    total_cost: Number | None = None,
) -> FuelEfficiency:
    """Kilometers driven and, when refueled, km per gallon and cost per gallon.

    Raises:
        ValidationError: If a refuel is recorded without a positive gallon amount.
    """
    total_km = total(segment.segment_km for segment in segments)
    if not refueled:
        return FuelEfficiency(total_km=total_km, efficiency_kmpg=None, cost_per_gallon=None)

    gallons_d = to_decimal(gallons)
    if gallons_d <= 0:
        raise ValidationError("Gallons added must be greater than zero when refueling")
    cost = to_decimal(total_cost)
    return FuelEfficiency(
        total_km=total_km,
        efficiency_kmpg=total_km / gallons_d if total_km > 0 else None,
        cost_per_gallon=cost / gallons_d if cost > 0 else None,
    )


def apply_efficiency(entry: FuelLogEntry) -> FuelLogEntry:
    """Return a copy of the log with its derived fields filled in."""
    result = calculate_efficiency(
        entry.segments, entry.refueled, entry.gallons_added, entry.total_fuel_cost
    )
    return entry.model_copy(
        update={
            "total_kilometers": result.total_km,
            "efficiency_kmpg": result.efficiency_kmpg,
            "cost_per_gallon": result.cost_per_gallon,
        }
    )


@dataclass(frozen=True)
class FleetSummary:
    total_km: Decimal
    total_gallons: Decimal
    total_cost: Decimal
    average_efficiency_kmpg: Decimal | None
    average_cost_per_km: Decimal | None


def summarize(entries: Iterable[FuelLogEntry]) -> FleetSummary:
    """Totals across logs; efficiency only counts refueled logs."""
    logs = list(entries)
    refueled = [e for e in logs if e.refueled and (e.gallons_added or ZERO) > 0]
    total_km = total(e.total_kilometers for e in logs)
    total_gallons = total(e.gallons_added or ZERO for e in refueled)
    total_cost = total(e.total_fuel_cost or ZERO for e in refueled)
    return FleetSummary(
        total_km=total_km,
        total_gallons=total_gallons,
        total_cost=total_cost,
        average_efficiency_kmpg=(
            total_km / total_gallons if total_gallons > 0 and total_km > 0 else None
        ),
        average_cost_per_km=total_cost / total_km if total_km > 0 and total_cost > 0 else None,
    )
