"""Product page fetcher.

One fetch() call is one HTTP attempt through (at most) one proxy, with a
rotated user-agent and platform-specific headers. fetch_with_retry()
wraps it in the per-URL attempt budget, asking the proxy pool for a
different proxy and switching user-agent before each retry.
"""

from typing import Callable, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from pricewatch.config import settings
from pricewatch.core.exceptions import (
    AllAttemptsFailedError,
    BlockedError,
    FetchError,
    HTTPError,
    NetworkError,
)
from pricewatch.scrapers.platforms import Platform, url_host
from pricewatch.scrapers.utils.proxy_client import ProxyClient, ProxyInfo
from pricewatch.scrapers.utils.rate_limiter import DomainRateLimiter
from pricewatch.scrapers.utils.user_agents import get_random_user_agent

logger = structlog.get_logger(__name__)

MAX_FETCH_ATTEMPTS = 3

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Encoding": "gzip, deflate",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "max-age=0",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

PLATFORM_HEADERS: Dict[Platform, Dict[str, str]] = {
    Platform.AMAZON: {
        "Accept-Language": "en-US,en;q=0.9",
    },
    Platform.JUMIA: {
        "Accept-Language": "en-US,en;q=0.9,ar;q=0.8",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
    },
}

# Lower-case substrings identifying bot walls and CAPTCHA interstitials
COMMON_BLOCK_SIGNATURES = (
    "cf-browser-verification",
    "challenges.cloudflare.com/turnstile",
    "attention required! | cloudflare",
    "<title>just a moment...</title>",
    "g-recaptcha",
    "h-captcha",
    "<title>access denied</title>",
)

PLATFORM_BLOCK_SIGNATURES: Dict[Platform, tuple] = {
    Platform.AMAZON: (
        "type the characters you see in this image",
        "enter the characters you see below",
        "<title>robot check</title>",
        "to discuss automated access to amazon data",
        "api-services-support@amazon.com",
    ),
    Platform.JUMIA: (
        "too many requests",
        "you have been blocked",
        "access denied",
    ),
}

EMPTY_BODY_SIGNATURE = "empty response body"

ClientFactory = Callable[[Optional[str]], httpx.AsyncClient]


def find_block_signature(html: str, platform: Platform) -> Optional[str]:
    """Return the first bot-wall signature present in ``html``, if any."""
    body = (html or "").lower()
    for signature in PLATFORM_BLOCK_SIGNATURES.get(platform, ()) + COMMON_BLOCK_SIGNATURES:
        if signature in body:
            return signature
    return None


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, FetchError) and error.retryable


class Fetcher:
    """Fetches product pages through the proxy pool.

    Errors are classified as NetworkError (transport failure or timeout),
    HTTPError (non-2xx status) or BlockedError (2xx with a bot-wall body).
    """

    def __init__(
        self,
        proxy_client: Optional[ProxyClient] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        use_proxy: Optional[bool] = None,
        use_rate_limiting: Optional[bool] = None,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """Initialize fetcher.

        Args:
            proxy_client: Proxy pool client (created from settings if proxies are enabled)
            rate_limiter: Per-host limiter (created from settings if rate limiting is enabled)
            use_proxy: Route requests through the proxy pool
            use_rate_limiting: Pace requests per host
            timeout: Total request timeout in seconds
            connect_timeout: Connect timeout in seconds
            max_attempts: Attempts per URL in fetch_with_retry (capped at 3)
            retry_delay: Seconds to wait between attempts
            client_factory: Builds an httpx.AsyncClient for a proxy URL (or None)
        """
        if use_proxy is None:
            use_proxy = settings.SCRAPING_PROXY_ENABLED
        if use_rate_limiting is None:
            use_rate_limiting = settings.SCRAPING_RATE_LIMITING_ENABLED

        self.proxy_client = proxy_client if proxy_client is not None else (ProxyClient() if use_proxy else None)
        self.rate_limiter = rate_limiter if rate_limiter is not None else (
            DomainRateLimiter() if use_rate_limiting else None
        )
        self.timeout = timeout if timeout is not None else settings.SCRAPING_REQUEST_TIMEOUT
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.SCRAPING_CONNECT_TIMEOUT
        self.max_attempts = min(max_attempts or settings.fetch_attempt_budget(), MAX_FETCH_ATTEMPTS)
        self.retry_delay = retry_delay if retry_delay is not None else settings.SCRAPING_RETRY_DELAY
        self._client_factory = client_factory
        self.logger = logger.bind(service="fetcher")

    def build_headers(self, platform: Platform, user_agent: Optional[str] = None) -> Dict[str, str]:
        headers = dict(BASE_HEADERS)
        headers.update(PLATFORM_HEADERS.get(platform, {}))
        headers["User-Agent"] = user_agent or get_random_user_agent()
        return headers

    def _create_client(self, proxy: Optional[ProxyInfo]) -> httpx.AsyncClient:
        proxy_url = proxy.url if proxy else None
        if self._client_factory is not None:
            return self._client_factory(proxy_url)
        return httpx.AsyncClient(
            proxy=proxy_url,
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
            follow_redirects=True,
        )

    async def _select_proxy(self, attempt: int, previous: Optional[ProxyInfo]) -> Optional[ProxyInfo]:
        if self.proxy_client is None:
            return None
        if attempt > 1:
            proxy = await self.proxy_client.rotate(previous)
        else:
            proxy = await self.proxy_client.next_proxy()
        if proxy is None:
            self.logger.warning("fetch_without_proxy", attempt=attempt, reason="proxy_unavailable")
        return proxy

    async def fetch(
        self,
        url: str,
        platform: Platform,
        attempt: int = 1,
        previous_proxy: Optional[ProxyInfo] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """Fetch one product page (single attempt).

        Args:
            url: Product page URL
            platform: Platform the URL belongs to (selects headers and block signatures)
            attempt: 1-based attempt number; attempts after the first rotate the proxy
            previous_proxy: Proxy used by the previous attempt, avoided when rotating
            user_agent: User-Agent header to send (random from the pool if omitted)

        Returns:
            Response body as text

        Raises:
            NetworkError: Transport failure or timeout
            HTTPError: Non-2xx response
            BlockedError: 2xx response that is empty, a bot wall or a CAPTCHA
        """
        proxy = await self._select_proxy(attempt, previous_proxy)
        log = self.logger.bind(
            url=url,
            platform=platform.value,
            attempt=attempt,
            proxy=proxy.address if proxy else None,
        )

        host = url_host(url)
        if self.rate_limiter is not None and host:
            await self.rate_limiter.acquire(host)

        log.info("fetch_started")
        try:
            async with self._create_client(proxy) as client:
                response = await client.get(url, headers=self.build_headers(platform, user_agent))
        except httpx.TimeoutException as e:
            log.warning("fetch_timeout", error=str(e))
            raise NetworkError(url, f"timeout ({type(e).__name__})", proxy=proxy) from e
        except httpx.ProxyError as e:
            log.warning("fetch_proxy_error", error=str(e))
            raise NetworkError(url, f"proxy error: {e}", proxy=proxy) from e
        except httpx.RequestError as e:
            log.warning("fetch_network_error", error=str(e), error_type=type(e).__name__)
            raise NetworkError(url, str(e) or type(e).__name__, proxy=proxy) from e

        if not response.is_success:
            log.warning("fetch_http_error", status=response.status_code)
            raise HTTPError(url, response.status_code, proxy=proxy)

        html = response.text
        if not html.strip():
            log.warning("fetch_empty_body", status=response.status_code)
            raise BlockedError(url, EMPTY_BODY_SIGNATURE, proxy=proxy)

        signature = find_block_signature(html, platform)
        if signature:
            log.warning("fetch_blocked", status=response.status_code, signature=signature)
            raise BlockedError(url, signature, proxy=proxy)

        log.info("fetch_succeeded", status=response.status_code, size=len(html))
        return html

    async def fetch_with_retry(
        self,
        url: str,
        platform: Platform,
        max_attempts: Optional[int] = None,
    ) -> str:
        """Fetch a page, retrying retryable failures on a fresh proxy and user-agent.

        Blocked responses, network errors and 5xx statuses are retried after
        a fixed delay; other failures propagate immediately.

        Raises:
            AllAttemptsFailedError: After the attempt budget is exhausted
            HTTPError: On a non-retryable (4xx) status
        """
        attempts = min(max_attempts or self.max_attempts, MAX_FETCH_ATTEMPTS)
        previous_proxy: Optional[ProxyInfo] = None
        user_agent: Optional[str] = None

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            self.logger.warning(
                "fetch_retrying",
                url=url,
                attempt=retry_state.attempt_number,
                max_attempts=attempts,
                error_type=type(error).__name__,
                error=str(error),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception(_is_retryable),
            before_sleep=log_retry,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    user_agent = get_random_user_agent(exclude=user_agent)
                    try:
                        html = await self.fetch(
                            url,
                            platform,
                            attempt=attempt.retry_state.attempt_number,
                            previous_proxy=previous_proxy,
                            user_agent=user_agent,
                        )
                    except FetchError as e:
                        previous_proxy = e.proxy
                        raise
        except RetryError as e:
            last_error = e.last_attempt.exception()
            self.logger.error(
                "fetch_all_attempts_failed",
                url=url,
                attempts=e.last_attempt.attempt_number,
                error_type=type(last_error).__name__,
            )
            raise AllAttemptsFailedError(url, e.last_attempt.attempt_number, last_error) from last_error

        return html
