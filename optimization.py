"""API call savings from grouping attendees by home airport."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from models import AirportGroup, Attendee, Location, Meeting


@dataclass
class SearchOptimizationStats:
    unique_airports: int
    standard_api_calls: int
    optimized_api_calls: int
    api_calls_saved: int
    efficiency_percentage: int
    airport_groups: List[AirportGroup] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return (
            f"{self.unique_airports} unique airport(s): {self.optimized_api_calls} API calls "
            f"instead of {self.standard_api_calls} "
            f"(saved {self.api_calls_saved}, {self.efficiency_percentage}% more efficient)"
        )


def group_attendees_by_airport(attendees: Iterable[Attendee]) -> List[AirportGroup]:
    """Attendees grouped by uppercased home airport, largest groups first."""
    groups: Dict[str, AirportGroup] = {}
    for attendee in attendees:
        code = attendee.home_airport.strip().upper()
        groups.setdefault(code, AirportGroup(airport=code)).attendee_names.append(attendee.name)
    return sorted(groups.values(), key=lambda g: (-g.attendee_count, g.airport))


def get_search_optimization_stats(
    attendees: List[Attendee],
    locations: List[Location],
) -> SearchOptimizationStats:
    groups = group_attendees_by_airport(attendees)
    cities = len(locations)

    standard = len(attendees) * cities
    optimized = len(groups) * cities
    saved = standard - optimized
    # round half up, not banker's rounding
    efficiency = int(saved / standard * 100 + 0.5) if saved > 0 else 0

    return SearchOptimizationStats(
        unique_airports=len(groups),
        standard_api_calls=standard,
        optimized_api_calls=optimized,
        api_calls_saved=saved,
        efficiency_percentage=efficiency,
        airport_groups=groups,
    )


def for_meeting(meeting: Meeting) -> SearchOptimizationStats:
    return get_search_optimization_stats(meeting.attendees, meeting.potential_locations)
