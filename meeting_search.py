"""
Meeting location search.

Finds the cheapest city for a group to meet in:
1) ROUTES: one provider search per unique (home airport, city) pair, with
   nearby-airport fallback and a single cooldown retry on rate limiting
2) EXPANSION: cached route quotes are fanned back out to every attendee
3) RANKING: per-city totals, cheapest city first
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Tuple

from airports import AirportDB, get_airport_db
from amadeus_client import (
    AmadeusConfig,
    AmadeusFlightsClient,
    AuthenticationFailed,
    FlightSearchError,
    InvalidRequest,
    RateLimitExceeded,
    create_amadeus_client,
)
from cache import CachedRoute, RouteCache, route_key
from models import (
    Attendee,
    FlightDetails,
    FlightSearchResult,
    Location,
    LocationAnalysis,
    Meeting,
)
from nearby_search import NearbyAirportSearch, NearbySearchResult, pause
from optimization import SearchOptimizationStats, for_meeting

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

ROUTE_PHASE_WEIGHT = 0.7
CENTS = Decimal("0.01")


def _normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _is_valid_code(code: str) -> bool:
    return len(code) == 3 and code.isascii() and code.isalpha()


def _unique_locations(locations: List[Location]) -> List[Location]:
    """First location per normalized airport code, in input order."""
    seen: Dict[str, Location] = {}
    for location in locations:
        seen.setdefault(_normalize_code(location.airport_code), location)
    return list(seen.values())


class _ProgressReporter:
    """Forwards progress to the caller, never letting the fraction go backwards."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self._last = 0.0

    def report(self, fraction: float, message: str):
        self._last = max(self._last, min(1.0, fraction))
        if self._callback:
            self._callback(self._last, message)


class MeetingSearchEngine:
    """
    Drives a complete search for one meeting.

    Owns a client (token cache + rate limiter) and a per-run route cache.
    Use one engine per concurrent run.
    """

    def __init__(
        self,
        client: AmadeusFlightsClient,
        airport_db: Optional[AirportDB] = None,
        nearby_search: Optional[NearbyAirportSearch] = None,
        rate_limit_cooldown: float = 2.0,
        max_consecutive_auth_failures: Optional[int] = None,
    ):
        self.client = client
        self.airport_db = airport_db or get_airport_db()
        self.nearby_search = nearby_search or NearbyAirportSearch(client, self.airport_db)
        self.rate_limit_cooldown = rate_limit_cooldown
        self.max_consecutive_auth_failures = max_consecutive_auth_failures

        self.route_cache = RouteCache()
        self.validation_failures: List[str] = []
        self.optimization_stats: Optional[SearchOptimizationStats] = None
        self.cancelled = False

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def find_best_locations(
        self,
        meeting: Meeting,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[LocationAnalysis]:
        """Search every combination and rank the candidate cities by total cost."""
        results = self.search_all_combinations(meeting, on_progress, cancel_event)
        return build_location_analyses(results, meeting)

    def search_all_combinations(
        self,
        meeting: Meeting,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[FlightSearchResult]:
        """
        One FlightSearchResult per attendee and city that has a quote.

        Args:
            meeting: Dates, attendees and candidate locations
            on_progress: Optional callback(fraction, message), fraction in 0..1
            cancel_event: Optional threading.Event; when set, the run stops
                issuing queries and returns what it has

        Raises:
            InvalidRequest: the meeting cannot be searched (checked before any query)
        """
        problems = meeting.validate()
        if problems:
            raise InvalidRequest("; ".join(problems), details={"problems": problems})

        self.route_cache = RouteCache()
        self.validation_failures = []
        self.cancelled = False
        progress = _ProgressReporter(on_progress)

        self.optimization_stats = for_meeting(meeting)
        logger.info(f"Flight search optimization: {self.optimization_stats.summary}")
        for group in self.optimization_stats.airport_groups:
            logger.info(f"  {group.description}")

        routes = self._plan_routes(meeting)
        locations = _unique_locations(meeting.potential_locations)
        if not self._search_routes(routes, meeting, progress, cancel_event):
            self.cancelled = True
            # no network needed: fan out whatever routes finished
            results, _ = self._expand_results(meeting, locations)
            logger.info(f"Returning {len(results)} partial result(s) from searched routes")
            return results

        results, completed = self._expand_results(meeting, locations, progress, cancel_event)
        if not completed:
            self.cancelled = True
            return results

        stats = self.optimization_stats
        progress.report(
            1.0,
            f"Search complete! Optimization saved {stats.api_calls_saved} API calls "
            f"({stats.efficiency_percentage}% more efficient)",
        )
        logger.info(
            f"Search finished: {len(results)} flight results from {len(routes)} routes "
            f"({self.route_cache.get_stats()['routes_with_quotes']} with quotes)"
        )
        return results

    # ========================================================================
    # PHASE 1: ROUTES
    # ========================================================================

    def _plan_routes(self, meeting: Meeting) -> List[Tuple[str, str]]:
        """Unique (origin, destination) pairs, skipping same-airport and malformed ones."""
        origins: List[str] = []
        for attendee in meeting.attendees:
            code = _normalize_code(attendee.home_airport)
            if not _is_valid_code(code):
                self._record_validation_failure(
                    f"Attendee {attendee.name!r} has invalid home airport {attendee.home_airport!r}"
                )
                continue
            if code not in origins:
                origins.append(code)

        destinations: List[str] = []
        for location in meeting.potential_locations:
            code = _normalize_code(location.airport_code)
            if not _is_valid_code(code):
                self._record_validation_failure(
                    f"Location {location.city_name!r} has invalid airport code {location.airport_code!r}"
                )
                continue
            if code not in destinations:
                destinations.append(code)

        return [(o, d) for o in origins for d in destinations if o != d]

    def _record_validation_failure(self, message: str):
        logger.warning(f"Skipping: {message}")
        self.validation_failures.append(message)

    def _search_routes(
        self,
        routes: List[Tuple[str, str]],
        meeting: Meeting,
        progress: _ProgressReporter,
        cancel_event: Optional[threading.Event],
    ) -> bool:
        """Search and cache every route. Returns False if the run was cancelled."""
        total = len(routes)
        if total == 0:
            progress.report(ROUTE_PHASE_WEIGHT, "No routes to search")
            return True

        consecutive_auth_failures = 0
        auth_dead = False

        for index, (origin, destination) in enumerate(routes, start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Search cancelled after {index - 1}/{total} routes")
                return False

            key = route_key(origin, destination)
            progress.report(
                ROUTE_PHASE_WEIGHT * (index - 1) / total,
                f"Searching flights {origin} → {destination} ({index}/{total})",
            )

            if auth_dead:
                self.route_cache.set_empty(origin, destination)
            else:
                try:
                    found = self._search_route(origin, destination, meeting, cancel_event)
                    consecutive_auth_failures = 0
                    self._cache_route(origin, destination, found)
                except AuthenticationFailed as e:
                    consecutive_auth_failures += 1
                    logger.warning(f"Route {key} failed: {e}")
                    self.route_cache.set_empty(origin, destination)
                    limit = self.max_consecutive_auth_failures
                    if limit is not None and consecutive_auth_failures >= limit:
                        logger.error(
                            f"{consecutive_auth_failures} consecutive authentication failures, "
                            f"skipping the remaining {total - index} route(s)"
                        )
                        auth_dead = True
                except FlightSearchError as e:
                    consecutive_auth_failures = 0
                    logger.warning(f"Route {key} failed: {e}")
                    self.route_cache.set_empty(origin, destination)
                except Exception:
                    consecutive_auth_failures = 0
                    logger.exception(f"Unexpected error searching route {key}")
                    self.route_cache.set_empty(origin, destination)

            progress.report(
                ROUTE_PHASE_WEIGHT * index / total,
                f"Searched {origin} → {destination} ({index}/{total})",
            )

        return True

    def _search_route(
        self,
        origin: str,
        destination: str,
        meeting: Meeting,
        cancel_event: Optional[threading.Event],
    ) -> Optional[NearbySearchResult]:
        """Nearby-fallback search with one retry after a cooldown on rate limiting."""
        try:
            return self._query_route(origin, destination, meeting, cancel_event)
        except RateLimitExceeded:
            logger.warning(
                f"Rate limited on {route_key(origin, destination)}, "
                f"retrying once in {self.rate_limit_cooldown:.1f}s"
            )
            if pause(self.rate_limit_cooldown, cancel_event):
                return None

        return self._query_route(origin, destination, meeting, cancel_event)

    def _query_route(self, origin, destination, meeting, cancel_event) -> Optional[NearbySearchResult]:
        return self.nearby_search.search_with_nearby_fallback(
            origin,
            destination,
            meeting.actual_start_date,
            meeting.actual_end_date,
            cancel_event=cancel_event,
        )

    def _cache_route(self, origin: str, destination: str, found: Optional[NearbySearchResult]) -> CachedRoute:
        if found is None or not found.quotes:
            return self.route_cache.set_empty(origin, destination)
        return self.route_cache.set(origin, destination, found.quotes, found.alternative_info())

    # ========================================================================
    # PHASE 2: EXPANSION
    # ========================================================================

    def _expand_results(
        self,
        meeting: Meeting,
        locations: List[Location],
        progress: Optional[_ProgressReporter] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[List[FlightSearchResult], bool]:
        """Fan cached route quotes out to attendees.

        Returns the results and False if the run was cancelled part way.
        """
        results: List[FlightSearchResult] = []
        total = len(meeting.attendees) * len(locations)
        done = 0

        for attendee in meeting.attendees:
            for location in locations:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Search cancelled while building results ({done}/{total})")
                    return results, False

                done += 1
                result = self._build_result(attendee, location, meeting)
                if result is not None:
                    results.append(result)

                if progress is None:
                    continue
                progress.report(
                    ROUTE_PHASE_WEIGHT + (1 - ROUTE_PHASE_WEIGHT) * done / total,
                    f"Processing results for {attendee.name} → {location.city_name}",
                )

        return results, True

    def _build_result(self, attendee: Attendee, location: Location, meeting: Meeting) -> Optional[FlightSearchResult]:
        home = _normalize_code(attendee.home_airport)
        entry = self.route_cache.get(home, location.airport_code)
        if entry is None or not entry.has_quotes:
            return None

        quote = entry.cheapest
        alternative = dataclasses.replace(entry.alternative) if entry.alternative else None
        departure_airport = alternative.alternative_airport if alternative else home
        destination = _normalize_code(location.airport_code)

        if quote.outbound is not None:
            outbound = FlightDetails.from_itinerary(quote.outbound, meeting.actual_start_date)
        else:
            outbound = FlightDetails.placeholder(meeting.actual_start_date, departure_airport, destination)

        if quote.inbound is not None:
            inbound = FlightDetails.from_itinerary(quote.inbound, meeting.actual_end_date)
        else:
            inbound = FlightDetails.placeholder(meeting.actual_end_date, destination, departure_airport)

        if alternative:
            for leg in (outbound, inbound):
                leg.is_from_alternative_airport = True
                leg.original_requested_airport = home

        return FlightSearchResult(
            attendee=attendee,
            destination=location,
            outbound_flight=outbound,
            return_flight=inbound,
            total_price=quote.price,
            currency=quote.currency,
            alternative_airport_used=alternative,
        )


# ============================================================================
# RANKING
# ============================================================================

def build_location_analyses(results: List[FlightSearchResult], meeting: Meeting) -> List[LocationAnalysis]:
    """Group results by city and rank cities by total cost, cheapest first.

    Each attendee contributes at most one (their cheapest) result per city,
    so the total is the sum of the per-attendee cheapest prices and the
    average divides by the number of attendees that actually got a quote.
    """
    locations: Dict[str, Location] = {}
    grouped: Dict[str, Dict[int, FlightSearchResult]] = {}
    for result in results:
        code = _normalize_code(result.destination.airport_code)
        locations.setdefault(code, result.destination)
        per_attendee = grouped.setdefault(code, {})
        current = per_attendee.get(id(result.attendee))
        if current is None or result.total_price < current.total_price:
            per_attendee[id(result.attendee)] = result

    analyses: List[LocationAnalysis] = []
    for code, per_attendee in grouped.items():
        location = locations[code]
        city_results = list(per_attendee.values())
        total_cost = sum((r.total_price for r in city_results), Decimal(0))
        average = (total_cost / len(city_results)).quantize(CENTS, rounding=ROUND_HALF_UP)
        analyses.append(LocationAnalysis(
            location=location,
            flight_results=city_results,
            total_cost=total_cost,
            average_cost_per_person=average,
            currency=city_results[0].currency,
            total_attendees_searched=len(meeting.attendees),
        ))

    analyses.sort(key=lambda a: a.total_cost)
    return analyses


def create_search_engine(config: Optional[AmadeusConfig] = None, **engine_kwargs) -> MeetingSearchEngine:
    """Wire a client and engine together; credentials default to config.env / environment."""
    return MeetingSearchEngine(create_amadeus_client(config), **engine_kwargs)
