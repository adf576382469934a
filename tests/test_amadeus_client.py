"""
Tests for the Amadeus Flights API client

Tests cover:
- Token fetch, caching and early refresh
- Request pacing
- HTTP status to error mapping
- Offer parsing, ordering and the flexible retry
- Airport search by keyword or state code
"""

from datetime import date
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from amadeus_client import (
    AmadeusConfig,
    AmadeusFlightsClient,
    AuthenticationFailed,
    FlightSearchErrorCode,
    InvalidRequest,
    NetworkError,
    NoFlightsFound,
    RateLimiter,
    RateLimitExceeded,
    TokenManager,
    create_amadeus_client,
)
from tests.conftest import make_offer, make_response


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def session():
    """A fake requests.Session that always hands out a token."""
    s = Mock()
    s.headers = {}
    s.post.return_value = make_response(200, {"access_token": "test_token", "expires_in": 1799})
    s.get.return_value = make_response(200, {"data": []})
    return s


@pytest.fixture
def client(config, session):
    return AmadeusFlightsClient(config, session=session)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


# ============================================================================
# TOKEN MANAGER TESTS
# ============================================================================

class TestTokenManager:
    """Tests for OAuth2 token management."""

    def test_fetch_new_token_success(self, config, session):
        manager = TokenManager(config, session=session)

        assert manager.get_token() == "test_token"
        session.post.assert_called_once()
        url = session.post.call_args.args[0]
        data = session.post.call_args.kwargs["data"]
        assert url == "https://test.api.amadeus.com/v1/security/oauth2/token"
        assert data == {
            "grant_type": "client_credentials",
            "client_id": "test_client_id",
            "client_secret": "test_client_secret",
        }

    def test_token_caching(self, config, session):
        """Token is cached and not refetched."""
        manager = TokenManager(config, session=session)

        token1 = manager.get_token()
        token2 = manager.get_token()

        assert token1 == token2 == "test_token"
        assert session.post.call_count == 1
        assert manager.fetch_count == 1

    def test_token_refresh_inside_margin(self, config, session):
        """Token is refreshed once it is within 60s of expiring."""
        clock = FakeClock(1000.0)
        session.post.return_value = make_response(200, {"access_token": "t", "expires_in": 1800})
        manager = TokenManager(config, session=session, clock=clock)

        manager.get_token()
        clock.now = 2739.0  # 61s left
        manager.get_token()
        assert session.post.call_count == 1

        clock.now = 2741.0  # 59s left
        manager.get_token()
        assert session.post.call_count == 2

    def test_auth_failure_raises_error(self, config, session):
        session.post.return_value = make_response(401, text="Invalid credentials")
        manager = TokenManager(config, session=session)

        with pytest.raises(AuthenticationFailed) as exc_info:
            manager.get_token()

        assert exc_info.value.code == FlightSearchErrorCode.AUTHENTICATION_FAILED
        assert exc_info.value.status_code == 401

    def test_missing_access_token_is_auth_failure(self, config, session):
        session.post.return_value = make_response(200, {"expires_in": 1799})
        with pytest.raises(AuthenticationFailed):
            TokenManager(config, session=session).get_token()

    def test_unreadable_expiry_is_auth_failure(self, config, session):
        session.post.return_value = make_response(200, {"access_token": "t", "expires_in": "soon"})

        with pytest.raises(AuthenticationFailed) as exc_info:
            TokenManager(config, session=session).get_token()

        assert "expires_in" in exc_info.value.details["reason"]

    def test_network_failure_during_token_fetch(self, config, session):
        session.post.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(NetworkError):
            TokenManager(config, session=session).get_token()

    def test_invalidate_clears_token(self, config, session):
        manager = TokenManager(config, session=session)
        manager.get_token()

        manager.invalidate()
        session.post.return_value = make_response(200, {"access_token": "token_2", "expires_in": 1799})

        assert manager.get_token() == "token_2"
        assert session.post.call_count == 2


# ============================================================================
# RATE LIMITER TESTS
# ============================================================================

class TestRateLimiter:
    def test_first_call_does_not_wait(self):
        clock = FakeClock()
        limiter = RateLimiter(0.1, clock=clock, sleep=clock.sleep)

        assert limiter.wait() == 0.0
        assert clock.sleeps == []

    def test_back_to_back_calls_are_spaced(self):
        clock = FakeClock()
        limiter = RateLimiter(0.1, clock=clock, sleep=clock.sleep)

        limiter.wait()
        clock.now += 0.03
        slept = limiter.wait()

        assert slept == pytest.approx(0.07)
        assert clock.sleeps == [pytest.approx(0.07)]

    def test_no_wait_after_interval_elapsed(self):
        clock = FakeClock()
        limiter = RateLimiter(0.1, clock=clock, sleep=clock.sleep)

        limiter.wait()
        clock.now += 0.5
        assert limiter.wait() == 0.0


# ============================================================================
# AMADEUS FLIGHTS CLIENT TESTS
# ============================================================================

class TestSearchRequest:
    def test_request_params_and_auth_header(self, client, session):
        client.search("lax", "sfo", date(2026, 6, 1), date(2026, 6, 5))

        url = session.get.call_args.args[0]
        params = session.get.call_args.kwargs["params"]
        headers = session.get.call_args.kwargs["headers"]

        assert url == "https://test.api.amadeus.com/v2/shopping/flight-offers"
        assert params == {
            "originLocationCode": "LAX",
            "destinationLocationCode": "SFO",
            "departureDate": "2026-06-01",
            "returnDate": "2026-06-05",
            "adults": 1,
            "currencyCode": "USD",
            "max": 10,
            "nonStop": "false",
            "maxPrice": 5000,
        }
        assert headers == {"Authorization": "Bearer test_token"}

    def test_token_is_reused_across_searches(self, client, session):
        client.search("LAX", "SFO", "2026-06-01", "2026-06-05")
        client.search("LAX", "JFK", "2026-06-01", "2026-06-05")

        assert session.post.call_count == 1
        assert client.get_request_stats() == {"total_requests": 2, "token_fetches": 1}

    def test_quotes_sorted_by_price(self, client, session):
        session.get.return_value = make_response(200, {"data": [
            make_offer("420.00", offer_id="a"),
            make_offer("199.99", offer_id="b"),
            make_offer("310.50", offer_id="c"),
        ]})

        quotes = client.search("LAX", "SFO", "2026-06-01", "2026-06-05")

        assert [q.id for q in quotes] == ["b", "c", "a"]
        assert quotes[0].price == Decimal("199.99")
        assert quotes[0].currency == "USD"
        assert quotes[0].outbound.segments[0].departure_airport == "LAX"
        assert quotes[0].inbound.segments[-1].arrival_airport == "LAX"

    def test_unusable_offers_are_skipped(self, client, session):
        no_itineraries = make_offer("100.00", offer_id="x")
        no_itineraries["itineraries"] = []
        session.get.return_value = make_response(200, {"data": [
            {"id": "bad", "price": {"total": "n/a"}},
            {"id": "zero", "price": {"total": "0"}, "itineraries": make_offer(1)["itineraries"]},
            no_itineraries,
            make_offer("250.00", offer_id="ok"),
        ]})

        quotes = client.search("LAX", "SFO", "2026-06-01", "2026-06-05")

        assert [q.id for q in quotes] == ["ok"]

    @pytest.mark.parametrize("bad_offer", [
        {"id": "no-price-block", "price": "199.00", "itineraries": make_offer(1)["itineraries"]},
        {"id": "null-itinerary", "price": {"total": "99.00"}, "itineraries": [None]},
        {"id": "null-segment", "price": {"total": "99.00"},
         "itineraries": [{"duration": "PT1H", "segments": [None]}]},
        {"id": "bare-segment", "price": {"total": "99.00"},
         "itineraries": [{"duration": "PT1H", "segments": [{"departure": "LAX", "arrival": None}]}]},
        "not-an-offer",
    ])
    def test_malformed_offer_does_not_sink_the_route(self, client, session, bad_offer):
        session.get.return_value = make_response(200, {"data": [bad_offer, make_offer("250.00", offer_id="ok")]})

        quotes = client.search("LAX", "SFO", "2026-06-01", "2026-06-05")

        assert [q.id for q in quotes] == ["ok"]

    def test_missing_data_yields_no_quotes(self, client, session):
        session.get.return_value = make_response(200, {"meta": {"count": 0}})
        assert client.search("LAX", "SFO", "2026-06-01", "2026-06-05") == []


class TestStatusMapping:
    def test_400_is_invalid_request(self, client, session):
        session.get.return_value = make_response(400, {"errors": [
            {"code": 477, "title": "INVALID FORMAT", "detail": "bad date"}
        ]})

        with pytest.raises(InvalidRequest) as exc_info:
            client.search("LAX", "SFO", "2026-06-01", "2026-06-05")

        assert exc_info.value.status_code == 400
        assert exc_info.value.details["error"] == "Code 477 - INVALID FORMAT - bad date"

    def test_401_is_auth_failure_and_drops_token(self, client, session):
        session.get.return_value = make_response(401, text="unauthorized")

        with pytest.raises(AuthenticationFailed):
            client.search("LAX", "SFO", "2026-06-01", "2026-06-05")

        session.get.return_value = make_response(200, {"data": []})
        client.search("LAX", "SFO", "2026-06-01", "2026-06-05")
        assert session.post.call_count == 2

    def test_429_is_rate_limited_without_retry(self, client, session):
        session.get.return_value = make_response(429, headers={"Retry-After": "2"})

        with pytest.raises(RateLimitExceeded) as exc_info:
            client.search("LAX", "SFO", "2026-06-01", "2026-06-05")

        assert exc_info.value.details["retry_after"] == "2"
        assert session.get.call_count == 1

    @pytest.mark.parametrize("status", [500, 502, 503, 404])
    def test_other_status_is_network_error(self, client, session, status):
        session.get.return_value = make_response(status, text="oops")

        with pytest.raises(NetworkError) as exc_info:
            client.search("LAX", "SFO", "2026-06-01", "2026-06-05")

        assert exc_info.value.status_code == status

    def test_transport_failure_is_network_error(self, client, session):
        session.get.side_effect = requests.exceptions.Timeout("slow")

        with pytest.raises(NetworkError):
            client.search("LAX", "SFO", "2026-06-01", "2026-06-05")

    def test_error_str_carries_code_and_message(self):
        err = RateLimitExceeded()
        assert str(err) == "RATE_LIMIT_EXCEEDED: Too many searches. Please try again in a few minutes."


class TestFallback:
    def test_flexible_retry_loosens_constraints(self, client, session):
        session.get.side_effect = [
            make_response(200, {"data": []}),
            make_response(200, {"data": [make_offer("777.00")]}),
        ]

        quotes = client.search_with_fallback("LAX", "SFO", "2026-06-01", "2026-06-05")

        assert [q.price for q in quotes] == [Decimal("777.00")]
        retry_params = session.get.call_args_list[1].kwargs["params"]
        assert retry_params["max"] == 50
        assert retry_params["maxPrice"] == 10000
        assert retry_params["travelClass"] == "ECONOMY"

    def test_no_retry_when_direct_search_finds_offers(self, client, session):
        session.get.return_value = make_response(200, {"data": [make_offer("150.00")]})

        client.search_with_fallback("LAX", "SFO", "2026-06-01", "2026-06-05")

        assert session.get.call_count == 1

    def test_cheapest_quote_raises_when_nothing_found(self, client, session):
        with pytest.raises(NoFlightsFound):
            client.cheapest_quote("LAX", "SFO", "2026-06-01", "2026-06-05")
        assert session.get.call_count == 2

    def test_cheapest_quote_returns_lowest_price(self, client, session):
        session.get.return_value = make_response(200, {"data": [
            make_offer("300.00", offer_id="hi"), make_offer("120.00", offer_id="lo"),
        ]})

        assert client.cheapest_quote("LAX", "SFO", "2026-06-01", "2026-06-05").id == "lo"


def test_create_amadeus_client_with_explicit_config():
    cfg = AmadeusConfig(client_id="id", client_secret="secret")
    a = create_amadeus_client(cfg)
    b = create_amadeus_client(cfg)

    assert a.config is cfg
    assert a.token_manager is not b.token_manager
    assert a.rate_limiter is not b.rate_limiter


# ============================================================================
# AIRPORT SEARCH TESTS
# ============================================================================

def _location(iata, city, state=None, country="US", name=None):
    address = {"cityName": city, "countryCode": country, "countryName": "United States of America"}
    if state:
        address["stateCode"] = state
    return {
        "id": f"A{iata}",
        "type": "location",
        "subType": "AIRPORT",
        "name": name or f"{city} Intl",
        "iataCode": iata,
        "address": address,
        "geoCode": {"latitude": 37.6, "longitude": -122.4},
    }


class TestAirportSearch:
    def test_keyword_search_params(self, client, session):
        session.get.return_value = make_response(200, {"data": [_location("SFO", "SAN FRANCISCO", "CA")]})

        airports = client.search_airports("san francisco")

        url = session.get.call_args.args[0]
        params = session.get.call_args.kwargs["params"]
        assert url == "https://test.api.amadeus.com/v1/reference-data/locations"
        assert params["keyword"] == "SAN FRANCISCO"
        assert params["subType"] == "AIRPORT"
        assert params["page[limit]"] == 10
        assert "countryCode" not in params

        (sfo,) = airports
        assert sfo.iata == "SFO"
        assert sfo.state_code == "CA"
        assert sfo.display_name == "SAN FRANCISCO (SFO)"
        assert sfo.city_and_country == "SAN FRANCISCO, United States of America"
        assert sfo.latitude == 37.6
        assert sfo.to_location().airport_code == "SFO"

    def test_state_code_search_filters_by_state(self, client, session):
        session.get.return_value = make_response(200, {"data": [
            _location("SFO", "SAN FRANCISCO", "CA"),
            _location("JFK", "NEW YORK", "NY"),
            _location("LAX", "LOS ANGELES", "ca"),
            _location("ORD", "CHICAGO"),
        ]})

        airports = client.search_airports("ca")

        params = session.get.call_args.kwargs["params"]
        assert params["countryCode"] == "US"
        assert params["page[limit]"] == 20
        assert "keyword" not in params
        assert [a.iata for a in airports] == ["SFO", "LAX"]

    def test_empty_query_makes_no_request(self, client, session):
        assert client.search_airports("   ") == []
        session.get.assert_not_called()
        session.post.assert_not_called()

    def test_unusable_locations_are_skipped(self, client, session):
        session.get.return_value = make_response(200, {"data": [
            {"id": "x", "iataCode": "SFO"},
            {"id": "y", "iataCode": "", "address": {"cityName": "Nowhere"}},
            None,
            _location("OAK", "OAKLAND", "CA"),
        ]})

        assert [a.iata for a in client.search_airports("oak")] == ["OAK"]

    @pytest.mark.parametrize("status,error", [
        (400, InvalidRequest),
        (401, AuthenticationFailed),
        (429, RateLimitExceeded),
        (500, NetworkError),
    ])
    def test_errors_use_the_shared_mapping(self, client, session, status, error):
        session.get.return_value = make_response(status, text="nope")

        with pytest.raises(error):
            client.search_airports("SFO")
