from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, List, Tuple
from unittest.mock import Mock

import pytest

from amadeus_client import AmadeusConfig
from models import Attendee, FlightQuote, FlightSegment, Itinerary, Location, Meeting


def make_segments(origin: str, destination: str, carrier: str, stops: int, day: str) -> List[dict]:
    hops = [origin] + [f"HB{chr(65 + i)}" for i in range(stops)] + [destination]
    return [
        {
            "departure": {"iataCode": hops[i], "at": f"{day}T{8 + i * 3:02d}:00:00"},
            "arrival": {"iataCode": hops[i + 1], "at": f"{day}T{10 + i * 3:02d}:00:00"},
            "carrierCode": carrier,
            "number": str(100 + i),
        }
        for i in range(len(hops) - 1)
    ]


def make_offer(price, origin="LAX", destination="SFO", *, offer_id="1", currency="USD",
               carrier="UA", stops=0, round_trip=True) -> dict:
    """A Flight Offers Search `data` item."""
    itineraries = [{"duration": "PT2H", "segments": make_segments(origin, destination, carrier, stops, "2026-06-01")}]
    if round_trip:
        itineraries.append(
            {"duration": "PT2H15M", "segments": make_segments(destination, origin, carrier, stops, "2026-06-05")}
        )
    return {"id": offer_id, "price": {"total": str(price), "currency": currency}, "itineraries": itineraries}


def make_quote(price, origin="LAX", destination="SFO", *, carrier="UA", stops=0,
               round_trip=True, currency="USD") -> FlightQuote:
    def itinerary(frm, to, day):
        segs = [
            FlightSegment(
                departure_airport=s["departure"]["iataCode"],
                departure_at=s["departure"]["at"],
                arrival_airport=s["arrival"]["iataCode"],
                arrival_at=s["arrival"]["at"],
                carrier_code=s["carrierCode"],
                number=s["number"],
            )
            for s in make_segments(frm, to, carrier, stops, day)
        ]
        return Itinerary(duration="PT3H45M", segments=segs)

    itineraries = [itinerary(origin, destination, "2026-06-01")]
    if round_trip:
        itineraries.append(itinerary(destination, origin, "2026-06-05"))
    return FlightQuote(id=f"{origin}-{destination}", price=Decimal(str(price)), currency=currency,
                       itineraries=itineraries)


def make_response(status_code=200, payload=None, text=None, headers=None):
    resp = Mock()
    resp.status_code = status_code
    resp.headers = headers or {}
    if payload is None:
        resp.json.side_effect = ValueError("no json")
        resp.text = text or ""
    else:
        resp.json.return_value = payload
        resp.text = text if text is not None else str(payload)
    return resp


class FakeFlightsClient:
    """Stands in for AmadeusFlightsClient.search_with_fallback.

    `routes` maps (origin, destination) to a list of quotes, or to a list of
    outcomes (quote lists / exceptions) consumed one call at a time.
    """

    def __init__(self, routes: Dict[Tuple[str, str], object] = None):
        self.routes = dict(routes or {})
        self.calls: List[Tuple[str, str, date, date]] = []

    def search_with_fallback(self, origin, destination, departure_date, return_date):
        self.calls.append((origin, destination, departure_date, return_date))
        outcome = self.routes.get((origin, destination), [])
        if isinstance(outcome, list) and outcome and not isinstance(outcome[0], FlightQuote):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)

    def route_calls(self):
        return [(o, d) for o, d, _, _ in self.calls]


@pytest.fixture
def config():
    """Create a test configuration."""
    return AmadeusConfig(
        client_id="test_client_id",
        client_secret="test_client_secret",
        base_url="https://test.api.amadeus.com",
        currency="USD",
        timeout=5,
        min_request_interval=0.0,
    )


@pytest.fixture
def meeting():
    return Meeting(
        name="Offsite",
        start_date=date(2026, 6, 2),
        number_of_days=3,
        travel_buffer_before=1,
        travel_buffer_after=1,
        potential_locations=[
            Location("San Francisco", "SFO", "US"),
            Location("New York", "JFK", "US"),
        ],
        attendees=[
            Attendee("Ana", "LAX"),
            Attendee("Ben", "ORD"),
        ],
    )
