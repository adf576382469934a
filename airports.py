"""Airport proximity index.

This module provides `get_airport_db()`, which is used by the nearby-airport
fallback search to:
- lookup airports by IATA code
- find alternative airports within a radius, closest first

Data source: the static `_AIRPORT_TABLE` below (major US airports, secondary
metro airports and a selection of international hubs).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from geo import distance_miles

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_MILES = 60.0

# code: (name, latitude, longitude)
_AIRPORT_TABLE: Dict[str, Tuple[str, float, float]] = {
    # United States - major hubs
    "ATL": ("Hartsfield-Jackson Atlanta International", 33.6407, -84.4277),
    "LAX": ("Los Angeles International", 33.9425, -118.4081),
    "ORD": ("Chicago O'Hare International", 41.9742, -87.9073),
    "DFW": ("Dallas/Fort Worth International", 32.8998, -97.0403),
    "DEN": ("Denver International", 39.8561, -104.6737),
    "JFK": ("John F. Kennedy International", 40.6413, -73.7781),
    "SFO": ("San Francisco International", 37.6213, -122.3790),
    "SEA": ("Seattle-Tacoma International", 47.4502, -122.3088),
    "LAS": ("Harry Reid International", 36.0840, -115.1537),
    "MCO": ("Orlando International", 28.4312, -81.3081),
    "EWR": ("Newark Liberty International", 40.6895, -74.1745),
    "CLT": ("Charlotte Douglas International", 35.2144, -80.9431),
    "PHX": ("Phoenix Sky Harbor International", 33.4484, -112.0740),
    "IAH": ("George Bush Intercontinental", 29.9902, -95.3368),
    "MIA": ("Miami International", 25.7959, -80.2870),
    "BOS": ("Logan International", 42.3656, -71.0096),
    "MSP": ("Minneapolis-Saint Paul International", 44.8848, -93.2223),
    "FLL": ("Fort Lauderdale-Hollywood International", 26.0742, -80.1506),
    "DTW": ("Detroit Metropolitan Wayne County", 42.2162, -83.3554),
    "LGA": ("LaGuardia Airport", 40.7769, -73.8740),
    "PHL": ("Philadelphia International", 39.8729, -75.2437),
    "SLC": ("Salt Lake City International", 40.7899, -111.9791),
    "DCA": ("Ronald Reagan Washington National", 38.8512, -77.0402),
    "IAD": ("Washington Dulles International", 38.9531, -77.4565),
    "SAN": ("San Diego International", 32.7338, -117.1933),
    "TPA": ("Tampa International", 27.9755, -82.5332),
    "PDX": ("Portland International", 45.5898, -122.5951),
    "STL": ("Lambert-St. Louis International", 38.7499, -90.3744),
    "HNL": ("Daniel K. Inouye International", 21.3099, -157.8581),
    "BWI": ("Baltimore-Washington International", 39.1774, -76.6684),
    "MDW": ("Chicago Midway International", 41.7868, -87.7522),
    "AUS": ("Austin-Bergstrom International", 30.1975, -97.6664),
    "BNA": ("Nashville International", 36.1245, -86.6782),
    "OAK": ("Oakland International", 37.7214, -122.2208),
    "SMF": ("Sacramento International", 38.6954, -121.5908),
    "SJC": ("San Jose International", 37.3639, -121.9289),
    "RDU": ("Raleigh-Durham International", 35.8776, -78.7875),
    "MCI": ("Kansas City International", 39.2976, -94.7139),
    "CLE": ("Cleveland Hopkins International", 41.4117, -81.8498),
    "CMH": ("John Glenn Columbus International", 39.9980, -82.8919),
    "IND": ("Indianapolis International", 39.7173, -86.2944),
    "MKE": ("Milwaukee Mitchell International", 42.9472, -87.8966),
    "MSY": ("Louis Armstrong New Orleans International", 29.9934, -90.2581),
    "RIC": ("Richmond International", 37.5052, -77.3197),
    "CVG": ("Cincinnati/Northern Kentucky International", 39.0488, -84.6678),
    "PIT": ("Pittsburgh International", 40.4915, -80.2329),
    "SAT": ("San Antonio International", 29.5337, -98.4698),
    # United States - secondary metro airports
    "BUR": ("Hollywood Burbank Airport", 34.2007, -118.3585),
    "LGB": ("Long Beach Airport", 33.8177, -118.1516),
    "SNA": ("John Wayne Airport", 33.6757, -117.8678),
    "ONT": ("Ontario International", 34.0560, -117.6012),
    "HOU": ("William P. Hobby Airport", 29.6454, -95.2789),
    "DAL": ("Dallas Love Field", 32.8471, -96.8518),
    "PVD": ("Rhode Island T. F. Green International", 41.7240, -71.4283),
    "MHT": ("Manchester-Boston Regional", 42.9326, -71.4357),
    "HPN": ("Westchester County Airport", 41.0670, -73.7076),
    "ISP": ("Long Island MacArthur Airport", 40.7952, -73.1002),
    "PBI": ("Palm Beach International", 26.6832, -80.0956),
    # International hubs
    "YYZ": ("Toronto Pearson International", 43.6777, -79.6248),
    "YUL": ("Montreal-Trudeau International", 45.4706, -73.7408),
    "YVR": ("Vancouver International", 49.1967, -123.1815),
    "MEX": ("Mexico City International", 19.4361, -99.0719),
    "LHR": ("London Heathrow", 51.4700, -0.4543),
    "LGW": ("London Gatwick", 51.1537, -0.1821),
    "STN": ("London Stansted", 51.8860, 0.2389),
    "CDG": ("Paris Charles de Gaulle", 49.0097, 2.5479),
    "ORY": ("Paris Orly", 48.7262, 2.3652),
    "AMS": ("Amsterdam Schiphol", 52.3105, 4.7683),
    "FRA": ("Frankfurt am Main", 50.0379, 8.5622),
    "MUC": ("Munich International", 48.3537, 11.7750),
    "ZRH": ("Zurich Airport", 47.4582, 8.5555),
    "MAD": ("Adolfo Suarez Madrid-Barajas", 40.4983, -3.5676),
    "BCN": ("Barcelona-El Prat", 41.2974, 2.0833),
    "FCO": ("Rome Fiumicino", 41.8003, 12.2389),
    "DUB": ("Dublin Airport", 53.4264, -6.2499),
    "DXB": ("Dubai International", 25.2532, 55.3657),
    "NRT": ("Tokyo Narita International", 35.7720, 140.3929),
    "HND": ("Tokyo Haneda", 35.5494, 139.7798),
    "SIN": ("Singapore Changi", 1.3644, 103.9915),
}


@dataclass(frozen=True)
class Airport:
    iata: str
    name: str
    latitude: float
    longitude: float

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.iata})"


@dataclass(frozen=True)
class NearbyAirport:
    code: str
    name: str
    distance_miles: float


class AirportDB:
    """In-memory airport table with radius lookups."""

    def __init__(self, airports: Iterable[Airport]):
        self._by_iata: Dict[str, Airport] = {}
        for a in airports:
            code = (a.iata or "").strip().upper()
            if len(code) != 3:
                continue
            # keep first occurrence
            self._by_iata.setdefault(code, a)

    def __len__(self) -> int:
        return len(self._by_iata)

    def __contains__(self, iata: str) -> bool:
        return (iata or "").strip().upper() in self._by_iata

    def get_airport(self, iata: str) -> Optional[Airport]:
        return self._by_iata.get((iata or "").strip().upper())

    def get_all_airports(self) -> List[Airport]:
        return list(self._by_iata.values())

    def display_name(self, iata: str) -> Optional[str]:
        airport = self.get_airport(iata)
        return airport.name if airport else None

    def distance_between(self, code_a: str, code_b: str) -> Optional[float]:
        a = self.get_airport(code_a)
        b = self.get_airport(code_b)
        if not a or not b:
            return None
        return distance_miles(a.latitude, a.longitude, b.latitude, b.longitude)

    def nearby(self, iata: str, radius_miles: float = DEFAULT_RADIUS_MILES) -> List[NearbyAirport]:
        """Airports within `radius_miles` of `iata`, closest first.

        Unknown codes yield an empty list: there is simply no fallback available.
        """
        code = (iata or "").strip().upper()
        target = self._by_iata.get(code)
        if target is None:
            logger.warning(f"Airport {code!r} not in proximity table - no nearby fallback available")
            return []

        out: List[NearbyAirport] = []
        for other_code, other in self._by_iata.items():
            if other_code == code:
                continue
            dist = distance_miles(target.latitude, target.longitude, other.latitude, other.longitude)
            if dist <= radius_miles:
                out.append(NearbyAirport(code=other_code, name=other.name, distance_miles=dist))

        out.sort(key=lambda n: (n.distance_miles, n.code))
        return out


_db_lock = threading.Lock()
_db_singleton: Optional[AirportDB] = None


def _load_airport_table() -> List[Airport]:
    return [
        Airport(iata=code, name=name, latitude=lat, longitude=lon)
        for code, (name, lat, lon) in _AIRPORT_TABLE.items()
    ]


def get_airport_db() -> AirportDB:
    """Return a cached AirportDB instance (built once per process)."""

    global _db_singleton
    if _db_singleton is not None:
        return _db_singleton

    with _db_lock:
        if _db_singleton is None:
            _db_singleton = AirportDB(_load_airport_table())
        return _db_singleton
