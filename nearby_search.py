"""Nearby-airport fallback search.

When an attendee's home airport has no offers for a route, try the airports
around it (closest first) and report which one actually served the route.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from airports import DEFAULT_RADIUS_MILES, AirportDB, get_airport_db
from amadeus_client import (
    AmadeusFlightsClient,
    AuthenticationFailed,
    DateLike,
    FlightSearchError,
    RateLimitExceeded,
)
from models import AlternativeAirportInfo, FlightQuote

logger = logging.getLogger(__name__)


def pause(seconds: float, cancel_event: Optional[threading.Event] = None) -> bool:
    """Sleep for `seconds`, waking early on cancellation.

    Returns True if the run was cancelled.
    """
    if cancel_event is None:
        cancel_event = threading.Event()
    if seconds <= 0:
        return cancel_event.is_set()
    return cancel_event.wait(seconds)


@dataclass
class NearbySearchResult:
    original_airport: str
    used_airport: str
    distance_miles: float
    quotes: List[FlightQuote] = field(default_factory=list)
    used_airport_name: Optional[str] = None

    @property
    def used_alternative(self) -> bool:
        return self.used_airport != self.original_airport

    def alternative_info(self) -> Optional[AlternativeAirportInfo]:
        if not self.used_alternative:
            return None
        return AlternativeAirportInfo(
            original_airport=self.original_airport,
            alternative_airport=self.used_airport,
            distance_in_miles=self.distance_miles,
            alternative_airport_name=self.used_airport_name,
        )


class NearbyAirportSearch:
    """Search a route from the origin, then from airports near the origin."""

    def __init__(
        self,
        client: AmadeusFlightsClient,
        airport_db: Optional[AirportDB] = None,
        radius_miles: float = DEFAULT_RADIUS_MILES,
        candidate_delay: float = 0.5,
    ):
        self.client = client
        self.airport_db = airport_db or get_airport_db()
        self.radius_miles = radius_miles
        self.candidate_delay = candidate_delay

    def search_with_nearby_fallback(
        self,
        origin: str,
        destination: str,
        departure_date: DateLike,
        return_date: DateLike,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[NearbySearchResult]:
        """First non-empty quote list from the origin or its neighbours, or None.

        Errors from the origin query propagate. For candidate airports,
        rate-limit and authentication errors propagate and anything else
        moves on to the next candidate.
        """
        origin = origin.strip().upper()
        destination = destination.strip().upper()

        quotes = self.client.search_with_fallback(origin, destination, departure_date, return_date)
        if quotes:
            return NearbySearchResult(
                original_airport=origin,
                used_airport=origin,
                distance_miles=0.0,
                quotes=quotes,
            )

        candidates = self.airport_db.nearby(origin, self.radius_miles)
        if not candidates:
            logger.info(f"No flights from {origin} to {destination} and no nearby airports to try")
            return None

        logger.info(
            f"No flights from {origin} to {destination}, trying {len(candidates)} nearby airport(s): "
            f"{', '.join(c.code for c in candidates)}"
        )

        for candidate in candidates:
            if candidate.code == destination:
                continue

            if pause(self.candidate_delay, cancel_event):
                logger.info(f"Nearby search for {origin}->{destination} cancelled")
                return None

            try:
                quotes = self.client.search_with_fallback(
                    candidate.code, destination, departure_date, return_date
                )
            except (RateLimitExceeded, AuthenticationFailed):
                raise
            except FlightSearchError as e:
                logger.warning(f"Nearby airport {candidate.code}->{destination} failed: {e}")
                continue

            if quotes:
                logger.info(
                    f"Using {candidate.code} ({candidate.distance_miles:.1f} mi from {origin}) "
                    f"for {origin}->{destination}"
                )
                return NearbySearchResult(
                    original_airport=origin,
                    used_airport=candidate.code,
                    distance_miles=candidate.distance_miles,
                    quotes=quotes,
                    used_airport_name=candidate.name,
                )

        logger.info(f"No flights to {destination} from {origin} or any airport within {self.radius_miles:.0f} mi")
        return None
