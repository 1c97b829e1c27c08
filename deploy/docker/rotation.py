# deploy/docker/rotation.py

from __future__ import annotations
import json, logging, re
from typing import Generic, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# scheme://host:START-END, host may carry user:pass@
_PORT_RANGE = re.compile(r"^(?P<prefix>[a-zA-Z][\w+.-]*://[^/\s]+?):(?P<start>\d+)-(?P<end>\d+)/?$")


class RotationPool(Generic[T]):
    """Round-robin selector over a fixed list.

    ``next()`` is not synchronised: concurrent requests share one cursor, so
    two of them may receive the same entry. Picks are best-effort round-robin
    across the whole process, not reserved per request.
    """

    def __init__(self, items: Iterable[T], default: Optional[T] = None):
        self._items: List[T] = list(items)
        self._default = default
        self._cursor = 0

    @property
    def items(self) -> Tuple[T, ...]:
        return tuple(self._items)

    @property
    def cursor(self) -> int:
        return self._cursor

    def __len__(self) -> int:
        return len(self._items)

    def next(self) -> Optional[T]:
        if not self._items:
            return self._default
        item = self._items[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._items)
        return item


def build_proxy_pool(proxy_url: str) -> RotationPool[str]:
    proxy_url = (proxy_url or "").strip()
    if not proxy_url:
        return RotationPool([])

    match = _PORT_RANGE.match(proxy_url)
    if match:
        start, end = int(match["start"]), int(match["end"])
        if start <= end:
            proxies = [f"{match['prefix']}:{port}" for port in range(start, end + 1)]
            logger.info("Proxy pool expanded to %d ports (%d-%d)", len(proxies), start, end)
            return RotationPool(proxies)
        logger.warning("Proxy port range %d-%d is descending, using it verbatim", start, end)
    return RotationPool([proxy_url])


def build_user_agent_pool(value: str) -> RotationPool[str]:
    value = (value or "").strip()
    if not value:
        return RotationPool([DEFAULT_USER_AGENT], default=DEFAULT_USER_AGENT)

    try:
        parsed = json.loads(value)
    except ValueError:
        parsed = None

    if isinstance(parsed, list):
        agents = [ua for ua in parsed if isinstance(ua, str) and ua.strip()]
        if agents:
            return RotationPool(agents, default=DEFAULT_USER_AGENT)
        logger.warning("SCRAPING_USER_AGENT list holds no usable entries, using default")
        return RotationPool([DEFAULT_USER_AGENT], default=DEFAULT_USER_AGENT)

    return RotationPool([value], default=DEFAULT_USER_AGENT)
