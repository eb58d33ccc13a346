# ==============================================================================
# FILE: netflowmon/core/dns_cache.py
# PURPOSE: Memoizing reverse-DNS lookups for remote addresses.
# ==============================================================================
import asyncio
import logging
import socket
from collections import OrderedDict
from typing import Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

# Addresses that never map to a real peer
UNRESOLVABLE = frozenset({"", "*", "0.0.0.0", "::", "[::]"})


def reverse_lookup(ip: str) -> Optional[str]:
    """Blocking resolver; returns the primary hostname for an IP."""
    hostname, _, _ = socket.gethostbyaddr(ip)
    return hostname


class DnsCache:
    """
    Caches successful reverse lookups. Failed lookups are not cached, so an
    unresolved address is retried the next time it shows up.
    """

    def __init__(self, resolver: Callable[[str], Optional[str]] = reverse_lookup,
                 timeout: float = 3.0, max_entries: Optional[int] = 4096):
        self._resolver = resolver
        self._timeout = timeout
        self._max_entries = max_entries
        self._cache: "OrderedDict[str, str]" = OrderedDict()
        self._pending: Dict[str, asyncio.Future] = {}
        self.lookups = 0

    def __contains__(self, ip: str) -> bool:
        return ip in self._cache

    @property
    def size(self) -> int:
        return len(self._cache)

    def get(self, ip: str) -> Optional[str]:
        return self._cache.get(ip)

    async def resolve_many(self, ips: Iterable[Optional[str]]) -> Dict[str, Optional[str]]:
        """Resolves the distinct addresses concurrently; returns ip -> hostname."""
        unique = list(dict.fromkeys(ip for ip in ips if ip))
        names = await asyncio.gather(*(self.resolve(ip) for ip in unique))
        return dict(zip(unique, names))

    async def resolve(self, ip: Optional[str]) -> Optional[str]:
        if not ip or ip in UNRESOLVABLE:
            return None
        if ip in self._cache:
            self._cache.move_to_end(ip)
            return self._cache[ip]

        # Concurrent misses share one lookup
        pending = self._pending.get(ip)
        if pending is None:
            pending = asyncio.ensure_future(self._lookup(ip))
            self._pending[ip] = pending
            pending.add_done_callback(lambda _f, key=ip: self._pending.pop(key, None))
        return await asyncio.shield(pending)

    async def _lookup(self, ip: str) -> Optional[str]:
        loop = asyncio.get_running_loop()
        self.lookups += 1
        try:
            hostname = await asyncio.wait_for(
                loop.run_in_executor(None, self._resolver, ip), self._timeout)
        except asyncio.TimeoutError:
            logger.debug("Reverse lookup for %s timed out", ip)
            return None
        except Exception as e:
            # herror/gaierror for unknown hosts; anything else is equally "no name"
            logger.debug("Reverse lookup for %s failed: %s", ip, e)
            return None

        if not hostname:
            return None
        self._store(ip, hostname)
        return hostname

    def _store(self, ip: str, hostname: str):
        self._cache[ip] = hostname
        self._cache.move_to_end(ip)
        if self._max_entries is not None:
            while len(self._cache) > self._max_entries:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug("DNS cache full, evicted %s", evicted)
