"""Client for the external proxy pool service.

The pool service owns proxy health; this client only asks it for the next
proxy, lists the pool, and reports service health. Any failure degrades
(no proxy, cached list or static fallback list) instead of raising.
"""

import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pricewatch.config import settings
from pricewatch.core.exceptions import ProxyServiceError

logger = structlog.get_logger(__name__)


class _ServerSideError(Exception):
    """5xx from the pool service; retried like a transport error."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


@dataclass(frozen=True)
class ProxyInfo:
    """One proxy handed out by the pool service."""

    host: str
    port: int
    is_healthy: bool = True
    last_checked: Optional[str] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        """Proxy URL suitable for ``httpx.AsyncClient(proxy=...)``."""
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_address(cls, address: str, **kwargs) -> "ProxyInfo":
        """Parse a ``host:port`` string.

        Raises:
            ValueError: If the address is not ``host:port`` with a numeric port
        """
        host, sep, port = (address or "").strip().rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"Invalid proxy address: {address!r}")
        return cls(host=host, port=int(port), **kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProxyInfo":
        if not data.get("host"):
            raise ValueError("proxy entry has no host")
        return cls(
            host=str(data["host"]),
            port=int(data["port"]),
            is_healthy=bool(data.get("is_healthy", data.get("healthy", True))),
            last_checked=data.get("last_checked"),
        )


@dataclass(frozen=True)
class ProxyServiceStatus:
    is_healthy: bool
    total_proxies: int = 0
    healthy_proxies: int = 0
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ProxyCache:
    """TTL cache holding an immutable snapshot of the proxy list.

    Readers get the current tuple; writers swap in a new tuple under a lock,
    so concurrent readers never observe a partially written list.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[Tuple[ProxyInfo, ...]] = None
        self._expires_at = 0.0

    def get(self) -> Optional[Tuple[ProxyInfo, ...]]:
        with self._lock:
            if self._snapshot is None or self._clock() >= self._expires_at:
                return None
            return self._snapshot

    def put(self, proxies: Sequence[ProxyInfo]) -> None:
        snapshot = tuple(proxies)
        with self._lock:
            self._snapshot = snapshot
            self._expires_at = self._clock() + self.ttl


class ProxyClient:
    """Async client for the proxy pool service.

    Requests are retried on transport errors and 5xx responses with
    exponential backoff (1s, 2s, 4s with the default multiplier). 4xx
    responses are returned to the caller without retrying.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        cache: Optional[ProxyCache] = None,
        cache_enabled: Optional[bool] = None,
        fallback_enabled: Optional[bool] = None,
        fallback_proxies: Optional[List[str]] = None,
        backoff_multiplier: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize proxy client.

        Args:
            base_url: Pool service URL (default from settings)
            timeout: Per-request timeout in seconds
            max_retries: Attempts per service request
            cache: Cache for the full proxy list
            cache_enabled: Whether all_proxies() uses the cache
            fallback_enabled: Whether all_proxies() degrades to fallback_proxies
            fallback_proxies: Static ``host:port`` list used when the service is down
            backoff_multiplier: Scale for the exponential backoff (0 disables waiting)
            transport: Optional httpx transport, used by tests
        """
        self.base_url = (base_url or settings.proxy_service_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PROXY_SERVICE_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else settings.PROXY_SERVICE_MAX_RETRIES)
        self.cache = cache or ProxyCache(ttl=settings.PROXY_SERVICE_CACHE_TTL)
        self.cache_enabled = (
            cache_enabled if cache_enabled is not None else settings.PROXY_SERVICE_CACHE_ENABLED
        )
        self.fallback_enabled = (
            fallback_enabled if fallback_enabled is not None else settings.PROXY_SERVICE_FALLBACK_ENABLED
        )
        self.fallback_proxies = (
            fallback_proxies if fallback_proxies is not None else settings.get_fallback_proxies()
        )
        self.backoff_multiplier = backoff_multiplier
        self._transport = transport
        self.logger = logger.bind(service="proxy_client")

    def _log_retry(self, retry_state: RetryCallState) -> None:
        self.logger.warning(
            "proxy_service_retrying",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    async def _request(self, endpoint: str) -> httpx.Response:
        """GET ``endpoint`` on the pool service with retries.

        Raises:
            ProxyServiceError: If every attempt failed at transport level or with 5xx
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_multiplier, exp_base=2),
            retry=retry_if_exception_type((httpx.TransportError, _ServerSideError)),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    async with httpx.AsyncClient(
                        base_url=self.base_url,
                        timeout=self.timeout,
                        transport=self._transport,
                        headers={"Accept": "application/json"},
                    ) as client:
                        response = await client.get(endpoint)
                    if response.status_code >= 500:
                        raise _ServerSideError(response.status_code)
        except (httpx.TransportError, _ServerSideError) as e:
            raise ProxyServiceError(endpoint, str(e) or type(e).__name__) from e
        return response

    async def next_proxy(self) -> Optional[ProxyInfo]:
        """Ask the pool for the next proxy in its rotation.

        Returns:
            ProxyInfo, or None if the service is unavailable or answered badly
        """
        try:
            response = await self._request("/proxy/next")
        except ProxyServiceError as e:
            self.logger.error("proxy_next_failed", error=str(e))
            return None

        if not response.is_success:
            self.logger.warning("proxy_next_rejected", status=response.status_code)
            return None

        try:
            data = response.json()
            proxy = ProxyInfo.from_address(
                data["proxy"],
                is_healthy=bool(data.get("is_healthy", True)),
                last_checked=data.get("last_checked"),
            )
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning("proxy_next_invalid_response", error=str(e))
            return None

        self.logger.debug("proxy_selected", proxy=proxy.address)
        return proxy

    async def rotate(self, previous: Optional[ProxyInfo], max_tries: int = 3) -> Optional[ProxyInfo]:
        """Next proxy that differs from ``previous`` where the pool allows it.

        A pool with a single proxy keeps handing back the same one; after
        ``max_tries`` the last answer is returned anyway.
        """
        proxy = await self.next_proxy()
        tries = 1
        while proxy is not None and previous is not None and proxy.address == previous.address and tries < max_tries:
            proxy = await self.next_proxy()
            tries += 1
        if proxy is not None and previous is not None and proxy.address == previous.address:
            self.logger.warning("proxy_rotation_exhausted", proxy=proxy.address)
        return proxy

    async def all_proxies(self) -> List[ProxyInfo]:
        """Full proxy list: cache, then service, then static fallback."""
        if self.cache_enabled:
            cached = self.cache.get()
            if cached is not None:
                self.logger.debug("proxy_list_cache_hit", count=len(cached))
                return list(cached)

        try:
            response = await self._request("/proxies")
        except ProxyServiceError as e:
            self.logger.error("proxy_list_failed", error=str(e))
            return self.get_fallback_proxies()

        if not response.is_success:
            self.logger.warning("proxy_list_rejected", status=response.status_code)
            return self.get_fallback_proxies()

        try:
            items = response.json()["proxies"]
            if not isinstance(items, list):
                raise TypeError("'proxies' is not a list")
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning("proxy_list_invalid_response", error=str(e))
            return self.get_fallback_proxies()

        proxies = []
        for item in items:
            try:
                proxies.append(ProxyInfo.from_dict(item))
            except (ValueError, KeyError, TypeError, AttributeError):
                self.logger.debug("proxy_entry_skipped", entry=item)

        if self.cache_enabled and proxies:
            self.cache.put(proxies)

        self.logger.info("proxy_list_retrieved", count=len(proxies))
        return proxies

    def get_fallback_proxies(self) -> List[ProxyInfo]:
        if not self.fallback_enabled:
            return []
        proxies = []
        for address in self.fallback_proxies:
            try:
                proxies.append(ProxyInfo.from_address(address))
            except ValueError:
                self.logger.warning("fallback_proxy_invalid", address=address)
        self.logger.info("proxy_fallback_used", count=len(proxies))
        return proxies

    async def is_healthy(self) -> bool:
        try:
            response = await self._request("/health")
        except ProxyServiceError as e:
            self.logger.error("proxy_health_check_failed", error=str(e))
            return False
        return response.is_success

    async def status(self) -> ProxyServiceStatus:
        """Pool service status from its /health endpoint."""
        try:
            response = await self._request("/health")
        except ProxyServiceError as e:
            return ProxyServiceStatus(is_healthy=False, message=f"Proxy service unavailable: {e}")

        if not response.is_success:
            return ProxyServiceStatus(
                is_healthy=False,
                message=f"Proxy service unavailable (HTTP {response.status_code})",
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        stats = data.get("stats") or {}
        try:
            total = int(stats.get("total_proxies", 0))
            healthy = int(stats.get("healthy_proxies", 0))
        except (ValueError, TypeError, AttributeError) as e:
            self.logger.warning("proxy_status_invalid_response", error=str(e))
            return ProxyServiceStatus(is_healthy=False, message=f"Proxy service returned invalid stats: {e}")
        return ProxyServiceStatus(
            is_healthy=True,
            total_proxies=total,
            healthy_proxies=healthy,
            message=data.get("status", "healthy"),
        )
