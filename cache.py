'''
Per-run route cache.
Holds provider quotes keyed by "ORIGIN-DEST" for the lifetime of one search run.
'''
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from models import AlternativeAirportInfo, FlightQuote


@dataclass
class CachedRoute:
    '''Outcome of searching one route (possibly empty).'''
    quotes: List[FlightQuote] = field(default_factory=list)
    alternative: Optional[AlternativeAirportInfo] = None

    @property
    def has_quotes(self) -> bool:
        return bool(self.quotes)

    @property
    def cheapest(self) -> Optional[FlightQuote]:
        return self.quotes[0] if self.quotes else None


def route_key(origin: str, destination: str) -> str:
    '''Build the cache key for a route, e.g. "LAX-SFO".'''
    return f"{(origin or '').strip().upper()}-{(destination or '').strip().upper()}"


class RouteCache:
    '''In-memory cache of route search outcomes.'''

    def __init__(self):
        self._entries: Dict[str, CachedRoute] = {}
        self._lock = threading.Lock()

    def get(self, origin: str, destination: str) -> Optional[CachedRoute]:
        '''
        Get the cached outcome for a route.

        Returns:
            CachedRoute, or None if the route was never searched
        '''
        with self._lock:
            return self._entries.get(route_key(origin, destination))

    def set(self, origin: str, destination: str, quotes: List[FlightQuote],
            alternative: Optional[AlternativeAirportInfo] = None) -> CachedRoute:
        '''Store the outcome for a route, replacing any previous entry.'''
        entry = CachedRoute(quotes=list(quotes), alternative=alternative)
        with self._lock:
            self._entries[route_key(origin, destination)] = entry
        return entry

    def set_empty(self, origin: str, destination: str) -> CachedRoute:
        '''Record that a route was searched (or failed) with no usable quotes.'''
        return self.set(origin, destination, [])

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._entries))

    def clear_all(self):
        '''Drop every cached route.'''
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        '''Get cache statistics.'''
        with self._lock:
            total = len(self._entries)
            with_quotes = sum(1 for e in self._entries.values() if e.has_quotes)
            via_alternative = sum(1 for e in self._entries.values() if e.alternative is not None)

        return {
            'total_routes': total,
            'routes_with_quotes': with_quotes,
            'empty_routes': total - with_quotes,
            'routes_via_alternative_airport': via_alternative,
        }
