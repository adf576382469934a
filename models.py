"""
Data models for the meeting location finder.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional


def _default_start_date() -> date:
    return date.today() + timedelta(days=7)


def format_duration(iso_duration: Optional[str]) -> Optional[str]:
    """Convert an ISO-8601 duration ("PT5H30M") to "5h 30m"."""
    if not iso_duration:
        return None
    match = re.fullmatch(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?", iso_duration.strip().upper())
    if not match or not any(match.groups()):
        return iso_duration
    days, hours, minutes = (int(g) if g else 0 for g in match.groups())
    hours += days * 24
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None


@dataclass(frozen=True)
class Location:
    """A candidate meeting city. Compared by airport code only."""
    city_name: str = field(compare=False)
    airport_code: str
    country_code: str = field(default="", compare=False)

    @property
    def display_name(self) -> str:
        return f"{self.city_name} ({self.airport_code})"


@dataclass(frozen=True)
class Attendee:
    """Someone travelling to the meeting from their home airport."""
    name: str
    home_airport: str

    @property
    def display_name(self) -> str:
        return f"{self.name} - {self.home_airport}"


@dataclass
class Meeting:
    """Meeting dates, candidate locations and attendees supplied by the UI layer."""
    name: str = ""
    start_date: date = field(default_factory=_default_start_date)
    number_of_days: int = 1
    travel_buffer_before: int = 1  # days before meeting
    travel_buffer_after: int = 1   # days after meeting
    potential_locations: List[Location] = field(default_factory=list)
    attendees: List[Attendee] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def actual_start_date(self) -> date:
        return self.start_date - timedelta(days=self.travel_buffer_before)

    @property
    def actual_end_date(self) -> date:
        meeting_end = self.start_date + timedelta(days=self.number_of_days - 1)
        return meeting_end + timedelta(days=self.travel_buffer_after)

    def validate(self) -> List[str]:
        """Return a list of problems that make this meeting unsearchable."""
        problems: List[str] = []
        if not self.attendees:
            problems.append("Meeting has no attendees")
        if not self.potential_locations:
            problems.append("Meeting has no potential locations")
        if self.number_of_days < 1:
            problems.append("Meeting must last at least one day")
        if self.travel_buffer_before < 0 or self.travel_buffer_after < 0:
            problems.append("Travel buffers cannot be negative")
        if not problems and self.actual_start_date > self.actual_end_date:
            problems.append("Travel start date is after travel end date")
        return problems


# ----------------------------------------------------------------------------
# Provider quotes
# ----------------------------------------------------------------------------

@dataclass
class FlightSegment:
    departure_airport: str
    departure_at: str
    arrival_airport: str
    arrival_at: str
    carrier_code: str
    number: str = ""


@dataclass
class Itinerary:
    duration: str
    segments: List[FlightSegment] = field(default_factory=list)


@dataclass
class FlightQuote:
    """A priced round-trip offer returned by the provider for one route."""
    id: str
    price: Decimal
    currency: str
    itineraries: List[Itinerary] = field(default_factory=list)

    @property
    def outbound(self) -> Optional[Itinerary]:
        return self.itineraries[0] if self.itineraries else None

    @property
    def inbound(self) -> Optional[Itinerary]:
        return self.itineraries[1] if len(self.itineraries) > 1 else None

    def __repr__(self) -> str:
        return f"FlightQuote({self.id}, {self.price} {self.currency}, {len(self.itineraries)} itineraries)"


# ----------------------------------------------------------------------------
# Search results
# ----------------------------------------------------------------------------

@dataclass
class FlightDetails:
    """One leg of an attendee's trip."""
    departure_date: datetime
    arrival_date: datetime
    departure_airport: str
    arrival_airport: str
    stops: int = 0
    airline: Optional[str] = None
    duration: Optional[str] = None  # e.g. "3h 45m"
    is_from_alternative_airport: bool = False
    original_requested_airport: Optional[str] = None

    @classmethod
    def from_itinerary(cls, itinerary: Itinerary, fallback_date: date) -> "FlightDetails":
        first = itinerary.segments[0]
        last = itinerary.segments[-1]
        fallback = datetime.combine(fallback_date, time.min)

        carriers: List[str] = []
        for seg in itinerary.segments:
            if seg.carrier_code and seg.carrier_code not in carriers:
                carriers.append(seg.carrier_code)

        return cls(
            departure_date=_parse_timestamp(first.departure_at) or fallback,
            arrival_date=_parse_timestamp(last.arrival_at) or fallback,
            departure_airport=first.departure_airport,
            arrival_airport=last.arrival_airport,
            stops=len(itinerary.segments) - 1,
            airline=", ".join(carriers) or None,
            duration=format_duration(itinerary.duration),
        )

    @classmethod
    def placeholder(cls, on_date: date, departure_airport: str, arrival_airport: str) -> "FlightDetails":
        """Stand-in leg used when the quote carries no return itinerary."""
        when = datetime.combine(on_date, time.min)
        return cls(
            departure_date=when,
            arrival_date=when,
            departure_airport=departure_airport,
            arrival_airport=arrival_airport,
        )


@dataclass
class AlternativeAirportInfo:
    original_airport: str
    alternative_airport: str
    distance_in_miles: float
    alternative_airport_name: Optional[str] = None

    @property
    def description(self) -> str:
        name = self.alternative_airport_name or self.alternative_airport
        return (
            f"Using {name} ({self.alternative_airport}) - "
            f"{self.distance_in_miles:.1f} miles from {self.original_airport}"
        )


@dataclass
class FlightSearchResult:
    attendee: Attendee
    destination: Location
    outbound_flight: FlightDetails
    return_flight: FlightDetails
    total_price: Decimal
    currency: str
    searched_at: datetime = field(default_factory=datetime.now)
    alternative_airport_used: Optional[AlternativeAirportInfo] = None

    @property
    def formatted_price(self) -> str:
        return f"{self.total_price:,.2f} {self.currency}"

    def __repr__(self) -> str:
        return (
            f"FlightSearchResult({self.attendee.home_airport}→{self.destination.airport_code}, "
            f"{self.formatted_price})"
        )


@dataclass
class LocationAnalysis:
    """Aggregated cost of meeting in one candidate city."""
    location: Location
    flight_results: List[FlightSearchResult]
    total_cost: Decimal
    average_cost_per_person: Decimal
    currency: str
    total_attendees_searched: int

    @property
    def attendee_count(self) -> int:
        return len(self.flight_results)

    @property
    def has_partial_results(self) -> bool:
        return len(self.flight_results) < self.total_attendees_searched

    @property
    def missing_flight_count(self) -> int:
        return self.total_attendees_searched - len(self.flight_results)

    @property
    def has_connection_flights(self) -> bool:
        return any(
            r.outbound_flight.stops > 0 or r.return_flight.stops > 0
            for r in self.flight_results
        )

    @property
    def cheapest_result(self) -> Optional[FlightSearchResult]:
        if not self.flight_results:
            return None
        return min(self.flight_results, key=lambda r: r.total_price)

    def __repr__(self) -> str:
        return (
            f"LocationAnalysis({self.location.display_name}, total={self.total_cost} {self.currency}, "
            f"{self.attendee_count}/{self.total_attendees_searched} attendees)"
        )


@dataclass
class AirportGroup:
    """Attendees sharing one home airport."""
    airport: str
    attendee_names: List[str] = field(default_factory=list)

    @property
    def attendee_count(self) -> int:
        return len(self.attendee_names)

    @property
    def description(self) -> str:
        plural = "" if self.attendee_count == 1 else "s"
        return f"{self.airport}: {self.attendee_count} attendee{plural} ({', '.join(self.attendee_names)})"


@dataclass(frozen=True)
class AirportLocation:
    """An airport returned by the provider's location search."""
    iata: str
    name: str
    city_name: str
    country_code: str
    country_name: Optional[str] = None
    state_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def display_name(self) -> str:
        return f"{self.city_name} ({self.iata})"

    @property
    def city_and_country(self) -> str:
        if self.country_name:
            return f"{self.city_name}, {self.country_name}"
        return self.city_name

    def to_location(self) -> Location:
        """Candidate meeting location for this airport."""
        return Location(self.city_name, self.iata, self.country_code)
