"""
Amadeus Flight Offers API Client

Round-trip price lookups for one origin/destination pair at a time:
A) SEARCH: a direct Flight Offers Search with the default constraints
B) FLEXIBLE RETRY: one repeat with looser constraints when A finds nothing

Implements OAuth2 token caching, request pacing and a typed error taxonomy.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from config import load_config
from models import AirportLocation, FlightQuote, FlightSegment, Itinerary

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]


def _safe_resp_text(text: str, limit: int = 500) -> str:
    """Return a compact/truncated response text for error details."""

    text = (text or "").strip()
    if len(text) > limit:
        return text[:limit] + "…(truncated)"
    return text


# ============================================================================
# ERRORS
# ============================================================================

class FlightSearchErrorCode(Enum):
    """Structured error codes for flight search failures."""
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"
    NO_FLIGHTS_FOUND = "NO_FLIGHTS_FOUND"


class FlightSearchError(Exception):
    """Base class for flight search failures.

    `message` is safe to show to users; `details` carries diagnostics
    such as the HTTP status.
    """
    code = FlightSearchErrorCode.NETWORK_ERROR
    default_message = "Flight search failed."

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(f"{self.code.value}: {self.message}")

    @property
    def status_code(self) -> Optional[int]:
        return self.details.get("status")


class AuthenticationFailed(FlightSearchError):
    code = FlightSearchErrorCode.AUTHENTICATION_FAILED
    default_message = "API authentication failed. Please check your credentials."


class InvalidRequest(FlightSearchError):
    code = FlightSearchErrorCode.INVALID_REQUEST
    default_message = "Invalid search parameters. Please check airport codes and dates."


class RateLimitExceeded(FlightSearchError):
    code = FlightSearchErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Too many searches. Please try again in a few minutes."


class NetworkError(FlightSearchError):
    code = FlightSearchErrorCode.NETWORK_ERROR
    default_message = "Network error. Please check your internet connection."


class NoFlightsFound(FlightSearchError):
    code = FlightSearchErrorCode.NO_FLIGHTS_FOUND
    default_message = "No flights found for this route and date."


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class AmadeusConfig:
    """Configuration for the Amadeus API client."""
    client_id: str
    client_secret: str
    base_url: str = "https://test.api.amadeus.com"
    currency: str = "USD"
    timeout: float = 15.0
    # minimum spacing between outbound requests (seconds)
    min_request_interval: float = 0.1
    # refresh the token this many seconds before it expires
    token_refresh_margin: float = 60.0
    # direct search constraints
    max_results: int = 10
    max_price: int = 5000
    # flexible retry constraints
    fallback_max_results: int = 50
    fallback_max_price: int = 10000
    fallback_travel_class: str = "ECONOMY"


# ============================================================================
# RATE LIMITER
# ============================================================================

class RateLimiter:
    """Spaces outbound requests at least `min_interval` seconds apart.

    Calls are only ever delayed, never dropped.
    """

    def __init__(
        self,
        min_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request_time: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Block until the next request may go out. Returns the time slept."""
        with self._lock:
            slept = 0.0
            if self._last_request_time is not None:
                elapsed = self._clock() - self._last_request_time
                if elapsed < self.min_interval:
                    slept = self.min_interval - elapsed
                    self._sleep(slept)
            self._last_request_time = self._clock()
            return slept


# ============================================================================
# TOKEN MANAGER
# ============================================================================

class TokenManager:
    """Manages the OAuth2 client-credentials token with early refresh."""

    def __init__(
        self,
        config: AmadeusConfig,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self._session = session or requests.Session()
        self._rate_limiter = rate_limiter or RateLimiter(config.min_request_interval)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = threading.Lock()
        self.fetch_count = 0

    def get_token(self) -> str:
        """Get a valid access token, fetching a new one if needed."""
        with self._lock:
            if self._is_token_valid():
                return self._token
            return self._fetch_new_token()

    def invalidate(self):
        """Drop the current token (e.g. after a 401)."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    @property
    def seconds_until_expiry(self) -> float:
        """0 when no token is held."""
        if not self._token:
            return 0.0
        return max(0.0, self._expires_at - self._clock())

    def _is_token_valid(self) -> bool:
        if not self._token:
            return False
        return self._clock() + self.config.token_refresh_margin < self._expires_at

    def _fetch_new_token(self) -> str:
        url = f"{self.config.base_url}/v1/security/oauth2/token"

        self._rate_limiter.wait()
        self.fetch_count += 1
        try:
            response = self._session.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(details={"reason": f"Token request failed: {e}"}) from e

        if response.status_code != 200:
            logger.error(f"Amadeus token request rejected (HTTP {response.status_code})")
            raise AuthenticationFailed(
                details={"status": response.status_code, "body": _safe_resp_text(response.text, 200)}
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationFailed(details={"reason": "Token response was not JSON"}) from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthenticationFailed(details={"reason": "Token response missing access_token"})

        raw_expiry = payload.get("expires_in") or 0
        try:
            expires_in = int(raw_expiry)
        except (TypeError, ValueError) as e:
            raise AuthenticationFailed(
                details={"reason": f"Token response has unreadable expires_in {raw_expiry!r}"}
            ) from e

        self._token = token
        self._expires_at = self._clock() + expires_in
        logger.info(f"Amadeus token acquired, expires in {expires_in}s")
        return self._token


# ============================================================================
# AMADEUS FLIGHTS CLIENT
# ============================================================================

def _format_date(value: DateLike) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10]


class AmadeusFlightsClient:
    """
    Flight Offers Search client.

    Public contract used by the meeting search:
    - search(origin, destination, departure_date, return_date) -> List[FlightQuote]
    - search_with_fallback(...) -> List[FlightQuote] (empty when nothing found)
    - cheapest_quote(...) -> FlightQuote, raising NoFlightsFound

    Also searches airports by keyword or US state code (search_airports).

    Raises FlightSearchError subclasses on auth/request/rate-limit/network errors.
    """

    OFFERS_ENDPOINT = "/v2/shopping/flight-offers"
    LOCATIONS_ENDPOINT = "/v1/reference-data/locations"

    def __init__(
        self,
        config: AmadeusConfig,
        session: Optional[requests.Session] = None,
        token_manager: Optional[TokenManager] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.config = config
        self.rate_limiter = rate_limiter or RateLimiter(config.min_request_interval)

        # Session for connection pooling
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.amadeus+json",
            "User-Agent": "MeetingLocationFinder/1.0",
        })

        self.token_manager = token_manager or TokenManager(
            config, session=self.session, rate_limiter=self.rate_limiter
        )

        # Request tracking for debugging
        self._request_count = 0
        self._request_lock = threading.Lock()

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def search(
        self,
        origin: str,
        destination: str,
        departure_date: DateLike,
        return_date: DateLike,
        *,
        max_results: Optional[int] = None,
        max_price: Optional[int] = None,
        travel_class: Optional[str] = None,
    ) -> List[FlightQuote]:
        """Query round-trip offers for one route; cheapest first."""
        params: Dict[str, Any] = {
            "originLocationCode": origin.strip().upper(),
            "destinationLocationCode": destination.strip().upper(),
            "departureDate": _format_date(departure_date),
            "returnDate": _format_date(return_date),
            "adults": 1,
            "currencyCode": self.config.currency,
            "max": max_results if max_results is not None else self.config.max_results,
            "nonStop": "false",
            "maxPrice": max_price if max_price is not None else self.config.max_price,
        }
        if travel_class:
            params["travelClass"] = travel_class

        payload = self._make_request(self.OFFERS_ENDPOINT, params)
        quotes = self._parse_offers(payload)
        # stable: equal prices keep provider order
        quotes.sort(key=lambda q: q.price)
        return quotes

    def search_with_fallback(
        self,
        origin: str,
        destination: str,
        departure_date: DateLike,
        return_date: DateLike,
    ) -> List[FlightQuote]:
        """Direct search, then one flexible retry with looser constraints."""
        quotes = self.search(origin, destination, departure_date, return_date)
        if quotes:
            return quotes

        logger.info(f"No offers for {origin}->{destination}, retrying with flexible constraints")
        quotes = self.search(
            origin,
            destination,
            departure_date,
            return_date,
            max_results=self.config.fallback_max_results,
            max_price=self.config.fallback_max_price,
            travel_class=self.config.fallback_travel_class,
        )
        if not quotes:
            logger.info(f"Flexible retry found no offers for {origin}->{destination}")
        return quotes

    def cheapest_quote(
        self,
        origin: str,
        destination: str,
        departure_date: DateLike,
        return_date: DateLike,
    ) -> FlightQuote:
        """Cheapest offer for a route, raising NoFlightsFound if there is none."""
        quotes = self.search_with_fallback(origin, destination, departure_date, return_date)
        if not quotes:
            raise NoFlightsFound(details={"origin": origin, "destination": destination})
        return quotes[0]

    def search_airports(self, query: str) -> List[AirportLocation]:
        """
        Look up airports by city name, airport code or US state code.

        A two-letter query is treated as a state code: US airports are
        fetched and filtered by `address.stateCode` (at most 20 kept).
        An empty query returns [] without a request.
        """
        query = (query or "").strip()
        if not query:
            return []

        is_state_search = len(query) == 2 and query.isalpha()
        if is_state_search:
            params: Dict[str, Any] = {
                "subType": "AIRPORT",
                "view": "FULL",
                "page[limit]": 20,
                "page[offset]": 0,
                "sort": "analytics.travelers.score",
                "countryCode": "US",
            }
        else:
            params = {
                "keyword": query.upper(),
                "subType": "AIRPORT",
                "view": "FULL",
                "page[limit]": 10,
                "page[offset]": 0,
                "sort": "analytics.travelers.score",
            }

        payload = self._make_request(self.LOCATIONS_ENDPOINT, params, label=f"airports '{query}'")
        airports = self._parse_locations(payload)

        if is_state_search:
            state = query.upper()
            airports = [a for a in airports if (a.state_code or "").upper() == state][:20]
        return airports

    def get_request_stats(self) -> dict:
        """Get request statistics."""
        return {
            "total_requests": self._request_count,
            "token_fetches": self.token_manager.fetch_count,
        }

    # ========================================================================
    # HTTP REQUEST HELPER
    # ========================================================================

    def _increment_request_count(self) -> int:
        with self._request_lock:
            self._request_count += 1
            return self._request_count

    def _make_request(self, endpoint: str, params: Dict[str, Any], label: Optional[str] = None) -> Dict[str, Any]:
        """Authenticated GET mapped onto the error taxonomy. No retries here."""
        if label is None:
            label = f"{params.get('originLocationCode')}->{params.get('destinationLocationCode')}"
        token = self.token_manager.get_token()
        self.rate_limiter.wait()

        url = f"{self.config.base_url}{endpoint}"
        request_id = self._increment_request_count()
        logger.info(f"[REQ-{request_id}] GET {endpoint} {label}")

        try:
            response = self.session.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"[REQ-{request_id}] Network error: {e}")
            raise NetworkError(details={"reason": str(e)}) from e

        status = response.status_code

        if status == 200:
            try:
                payload = response.json()
            except ValueError as e:
                raise NetworkError(details={"status": status, "reason": "Invalid JSON in response"}) from e
            logger.info(f"[REQ-{request_id}] Success")
            return payload if isinstance(payload, dict) else {}

        error_msg = self._parse_error_message(response)
        details = {"status": status, "error": error_msg}

        if status == 400:
            logger.warning(f"[REQ-{request_id}] Bad request: {error_msg}")
            raise InvalidRequest(details=details)

        if status == 401:
            # force re-authentication on the next call
            self.token_manager.invalidate()
            logger.warning(f"[REQ-{request_id}] Unauthorized: {error_msg}")
            raise AuthenticationFailed(details=details)

        if status == 429:
            details["retry_after"] = response.headers.get("Retry-After")
            logger.warning(f"[REQ-{request_id}] Rate limited (429)")
            raise RateLimitExceeded(details=details)

        logger.warning(f"[REQ-{request_id}] Unexpected status {status}: {error_msg}")
        raise NetworkError(details=details)

    # ========================================================================
    # PARSING
    # ========================================================================

    def _parse_error_message(self, resp: requests.Response) -> str:
        """Parse an Amadeus error body into a short message."""
        try:
            error_data = resp.json()
        except ValueError:
            return _safe_resp_text(resp.text)

        errors = error_data.get("errors") if isinstance(error_data, dict) else None
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first_error = errors[0]
            msg_parts = []
            if first_error.get("code"):
                msg_parts.append(f"Code {first_error['code']}")
            if first_error.get("title"):
                msg_parts.append(first_error["title"])
            if first_error.get("detail"):
                msg_parts.append(first_error["detail"])
            if msg_parts:
                return " - ".join(msg_parts)
        return _safe_resp_text(resp.text)

    def _parse_offers(self, payload: Dict[str, Any]) -> List[FlightQuote]:
        """Parse Flight Offers Search response into FlightQuote objects."""
        data = payload.get("data")
        if not isinstance(data, list):
            return []

        quotes: List[FlightQuote] = []
        for offer in data:
            quote = self._parse_offer(offer)
            if quote is not None:
                quotes.append(quote)
        return quotes

    def _parse_offer(self, offer: Any) -> Optional[FlightQuote]:
        if not isinstance(offer, dict):
            logger.warning(f"Skipping malformed offer {offer!r}")
            return None
        offer_id = offer.get("id")

        price_info = offer.get("price")
        if not isinstance(price_info, dict):
            logger.warning(f"Skipping offer {offer_id!r} without a price block")
            return None
        try:
            price = Decimal(str(price_info.get("total")))
        except (InvalidOperation, ValueError):
            logger.warning(f"Skipping offer {offer_id!r} with unreadable price {price_info!r}")
            return None
        if not price.is_finite() or price <= 0:
            return None

        raw_itineraries = offer.get("itineraries") or []
        if not isinstance(raw_itineraries, list):
            raw_itineraries = []

        itineraries: List[Itinerary] = []
        for raw_itin in raw_itineraries:
            if not isinstance(raw_itin, dict):
                logger.warning(f"Skipping offer {offer_id!r} with malformed itinerary {raw_itin!r}")
                return None
            segments = []
            for raw_seg in raw_itin.get("segments") or []:
                if not isinstance(raw_seg, dict):
                    logger.warning(f"Skipping offer {offer_id!r} with malformed segment {raw_seg!r}")
                    return None
                departure = raw_seg.get("departure")
                arrival = raw_seg.get("arrival")
                if not isinstance(departure, dict) or not isinstance(arrival, dict):
                    logger.warning(f"Skipping offer {offer_id!r} with incomplete segment")
                    return None
                segments.append(FlightSegment(
                    departure_airport=departure.get("iataCode", ""),
                    departure_at=departure.get("at", ""),
                    arrival_airport=arrival.get("iataCode", ""),
                    arrival_at=arrival.get("at", ""),
                    carrier_code=raw_seg.get("carrierCode", ""),
                    number=str(raw_seg.get("number", "")),
                ))
            if segments:
                itineraries.append(Itinerary(duration=raw_itin.get("duration", ""), segments=segments))

        if not itineraries:
            logger.warning(f"Skipping offer {offer_id!r} without itineraries")
            return None

        return FlightQuote(
            id=str(offer_id or ""),
            price=price,
            currency=price_info.get("currency") or self.config.currency,
            itineraries=itineraries,
        )

    def _parse_locations(self, payload: Dict[str, Any]) -> List[AirportLocation]:
        """Parse a reference-data/locations response, skipping unusable entries."""
        data = payload.get("data")
        if not isinstance(data, list):
            return []

        airports: List[AirportLocation] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            iata = (item.get("iataCode") or "").strip().upper()
            address = item.get("address")
            if len(iata) != 3 or not isinstance(address, dict):
                logger.warning(f"Skipping location {item.get('id')!r} without airport code or address")
                continue

            geo = item.get("geoCode") if isinstance(item.get("geoCode"), dict) else {}
            airports.append(AirportLocation(
                iata=iata,
                name=item.get("name") or iata,
                city_name=address.get("cityName") or item.get("name") or iata,
                country_code=address.get("countryCode") or "",
                country_name=address.get("countryName"),
                state_code=address.get("stateCode"),
                latitude=geo.get("latitude"),
                longitude=geo.get("longitude"),
            ))
        return airports


# ============================================================================
# FACTORY FUNCTION
# ============================================================================

def create_amadeus_client(config: Optional[AmadeusConfig] = None) -> AmadeusFlightsClient:
    """Create a client with its own token and rate-limit state.

    Without an explicit config, credentials come from config.env / environment;
    AuthenticationFailed is raised when they are not configured.
    """
    return AmadeusFlightsClient(config or load_config().to_amadeus_config())
