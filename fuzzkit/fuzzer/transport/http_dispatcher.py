import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Optional

import httpx

from fuzzkit.errors import NetworkError
from fuzzkit.models import ConnectionOutcome, DispatchResult, FuzzCase, TransportErrorKind

logger = logging.getLogger(__name__)

DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "name resolution",
    "no address associated",
)


def _connect_kind(error: Exception) -> TransportErrorKind:
    text = str(error).lower()
    if any(marker in text for marker in DNS_MARKERS):
        return TransportErrorKind.DNS_FAILURE
    if "refused" in text:
        return TransportErrorKind.CONNECTION_REFUSED
    if "reset" in text:
        return TransportErrorKind.CONNECTION_RESET
    return TransportErrorKind.OTHER


class RateLimiter:
    """Spaces request starts so that at most `rate` begin per second."""

    def __init__(self, rate: float = 0.0):
        self.rate = rate
        self._lock = asyncio.Lock()
        self._next_slot = 0.0

    async def acquire(self) -> None:
        if self.rate <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            wait = self._next_slot - now
            if wait > 0:
                await asyncio.sleep(wait)
                now = time.monotonic()
            self._next_slot = max(now, self._next_slot) + 1.0 / self.rate


class HttpDispatcher:
    """
    Sends FuzzCases to an HTTP target.
    Bounded concurrency, per-request timeout, retry with exponential
    backoff for transport failures only. Never raises for network trouble.
    """

    def __init__(
        self,
        base_url: str,
        concurrency: int = 4,
        timeout: float = 5.0,
        connect_timeout: Optional[float] = None,
        max_attempts: int = 3,
        backoff_base: float = 0.25,
        backoff_max: float = 8.0,
        rate_limit: float = 0.0,
        body_limit: int = 4096,
        forced_headers: Optional[dict] = None,
        cancel_event: Optional[asyncio.Event] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        verify: bool = True,
        event_log_path: Optional[str] = None,
    ):
        self.base_url = base_url
        self.concurrency = concurrency
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.body_limit = body_limit
        self.forced_headers = forced_headers or {}
        self.cancel_event = cancel_event or asyncio.Event()
        self.transport = transport
        self.verify = verify
        self.event_log_path = event_log_path

        self.limiter = RateLimiter(rate_limit)
        self._semaphore = asyncio.Semaphore(concurrency)
        self._client: httpx.AsyncClient | None = None
        self.in_flight = 0
        self.peak_in_flight = 0
        self.attempt_count = 0

    async def __aenter__(self) -> "HttpDispatcher":
        self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout or self.timeout),
                transport=self.transport,
                verify=self.verify,
                follow_redirects=False,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def request_headers(self, case: FuzzCase) -> dict[str, str]:
        """Case headers with forced headers overriding, case-insensitively."""
        forced = {k.lower() for k in self.forced_headers}
        headers = {k: v for k, v in case.headers.items() if k.lower() not in forced}
        headers.update(self.forced_headers)
        if case.body and "content-type" not in {k.lower() for k in headers}:
            headers["Content-Type"] = "application/json"
        return headers

    async def send(self, case: FuzzCase) -> DispatchResult:
        """One logical dispatch: up to max_attempts network round trips."""
        self.open()
        attempts = 0
        last_error: NetworkError | None = None

        while attempts < self.max_attempts:
            attempts += 1
            try:
                result = await self._attempt(case)
            except NetworkError as e:
                last_error = e
                logger.debug("attempt %d/%d for %s failed: %s", attempts, self.max_attempts, case.case_id, e)
                if attempts >= self.max_attempts:
                    break
                if await self._backoff(attempts):
                    return self._failure(last_error, attempts, ConnectionOutcome.ABANDONED)
                continue

            result.attempts = attempts
            result.expects_json = case.expects_json
            if result.status_code is not None and result.status_code >= 500:
                self._log_event("ERROR_STATUS", case, result.body, status_code=result.status_code)
            return result

        self._log_event("TRANSPORT_ERROR", case, error=str(last_error))
        return self._failure(last_error, attempts, ConnectionOutcome.TRANSPORT_ERROR)

    async def _attempt(self, case: FuzzCase) -> DispatchResult:
        async with self._semaphore:
            await self.limiter.acquire()
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            self.attempt_count += 1
            start = time.perf_counter()
            try:
                # httpx timeouts are per read; this bounds the whole exchange
                async with asyncio.timeout(self.timeout):
                    async with self._client.stream(
                        case.method,
                        case.path,
                        content=case.body,
                        headers=self.request_headers(case),
                    ) as response:
                        body, truncated, note = await self._read_limited(response)
                        elapsed = (time.perf_counter() - start) * 1000
                        return DispatchResult(
                            outcome=ConnectionOutcome.RESPONDED,
                            status_code=response.status_code,
                            latency_ms=elapsed,
                            body=body,
                            body_truncated=truncated,
                            content_type=response.headers.get("content-type", ""),
                            headers={k.lower(): v for k, v in response.headers.items()},
                            error_message=note,
                        )
            except httpx.TimeoutException as e:
                raise NetworkError(TransportErrorKind.TIMEOUT.value, str(e) or "request timed out") from e
            except TimeoutError as e:
                raise NetworkError(
                    TransportErrorKind.TIMEOUT.value, f"no complete response within {self.timeout:g}s"
                ) from e
            except httpx.ConnectError as e:
                raise NetworkError(_connect_kind(e).value, str(e)) from e
            except httpx.RemoteProtocolError as e:
                raise NetworkError(TransportErrorKind.CONNECTION_CLOSED.value, str(e)) from e
            except (httpx.ReadError, httpx.WriteError) as e:
                raise NetworkError(TransportErrorKind.CONNECTION_RESET.value, str(e)) from e
            except httpx.TransportError as e:
                raise NetworkError(TransportErrorKind.OTHER.value, str(e)) from e
            finally:
                self.in_flight -= 1

    async def _read_limited(self, response: httpx.Response) -> tuple[bytes, bool, str]:
        """Read at most body_limit bytes; a body cut short after the status line is still a response."""
        chunks: list[bytes] = []
        size = 0
        truncated = False
        try:
            async for chunk in response.aiter_bytes():
                room = self.body_limit - size
                if len(chunk) > room:
                    chunks.append(chunk[:room])
                    truncated = True
                    break
                chunks.append(chunk)
                size += len(chunk)
        except httpx.TimeoutException:
            raise
        except httpx.TransportError as e:
            return b"".join(chunks), True, f"body read interrupted: {e}"
        return b"".join(chunks), truncated, ""

    async def _backoff(self, attempt: int) -> bool:
        """Sleep before the next attempt. Returns True if the campaign was cancelled meanwhile."""
        if self.cancel_event.is_set():
            return True
        delay = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _failure(self, error: NetworkError | None, attempts: int, outcome: ConnectionOutcome) -> DispatchResult:
        kind = TransportErrorKind(error.kind) if error else TransportErrorKind.OTHER
        return DispatchResult(
            outcome=outcome,
            error_kind=kind,
            attempts=attempts,
            error_message=error.message if error else "",
        )

    def _log_event(self, event_type: str, case: FuzzCase, response_body: bytes | None = None, status_code: int | None = None, error: str | None = None):
        """Append a request/response transcript to the event log file."""
        if not self.event_log_path:
            return
        timestamp = datetime.now().isoformat()

        with open(self.event_log_path, "a", encoding="utf-8", errors="replace") as f:
            f.write(f"\n{'='*80}\n")
            f.write(f"TIMESTAMP: {timestamp}\n")
            f.write(f"EVENT:     {event_type}\n")
            f.write(f"REQUEST:   {case.method} {self.base_url}{case.path}\n")
            f.write(f"CASE:      {case.template_id} {case.strategy}/{case.mutation} seed={case.seed}\n")
            if status_code:
                f.write(f"STATUS:    {status_code}\n")
            if error:
                f.write(f"ERROR:     {error}\n")

            f.write("-" * 40 + " [REQUEST] " + "-" * 40 + "\n")
            f.write(case.body[:2000].decode(errors="replace"))
            f.write("\n")

            if response_body:
                f.write("-" * 40 + " [RESPONSE] " + "-" * 40 + "\n")
                try:
                    f.write(json.dumps(json.loads(response_body), indent=2))
                except (json.JSONDecodeError, UnicodeDecodeError):
                    f.write(response_body.decode(errors="replace"))
                f.write("\n")
            f.write(f"{'='*80}\n")
