"""Backend HTTP client with hard timeouts and first-terminal-event-wins settling.

``requests`` itself cannot abort a call that is already in flight, so each
request runs on a worker thread and races a timer. Whichever finishes first
settles the :class:`PendingRequest`. Later events are dropped: a timer that
fires after the response is a no-op, and a response that arrives after the
timeout is discarded without touching any caller state.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from ..core.exceptions import (
    ApplicationError, MalformedResponseError, NetworkError, RequestError, RequestTimeoutError,
)
from ..core.logging_config import CorrelationContext, get_correlation_id

logger = logging.getLogger(__name__)

Dispatch = Callable[..., Any]


def call_now(func, *args):
    """Default dispatcher: run the callback on the calling thread."""
    return func(*args)


@dataclass(frozen=True)
class BackendRequest:
    """A single backend call, relative to the client's base URL."""
    method: str
    path: str
    params: Optional[Dict[str, Any]] = None
    files: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    expect_json: bool = True

    def url(self, base_url: str) -> str:
        if self.path.startswith(("http://", "https://")):
            return self.path
        return f"{base_url.rstrip('/')}/{self.path.lstrip('/')}"

    def describe(self) -> str:
        return f"{self.method.upper()} {self.path}"


@dataclass
class RequestResult:
    """Either a value or the error that ended the request."""
    value: Any = None
    error: Optional[ApplicationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, RequestTimeoutError)

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


@dataclass
class PendingRequest:
    """One in-flight request; settles exactly once."""
    request: BackendRequest
    timeout_ms: int
    on_done: Optional[Callable[[RequestResult], None]] = None
    dispatch: Dispatch = call_now
    correlation_id: Optional[str] = None
    future: Optional[Future] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _done: threading.Event = field(default_factory=threading.Event, repr=False)
    _result: Optional[RequestResult] = None
    _cancelled: bool = False
    _timer: Any = None

    @property
    def settled(self) -> bool:
        return self._done.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def result(self) -> Optional[RequestResult]:
        return self._result

    def wait(self, timeout: Optional[float] = None) -> Optional[RequestResult]:
        self._done.wait(timeout)
        return self._result

    def settle(self, result: RequestResult) -> bool:
        """Record the first terminal outcome. Returns False if already settled."""
        with self._lock:
            if self._done.is_set():
                return False
            self._result = result
            self._done.set()
        if self._timer is not None:
            self._timer.cancel()
        if self.on_done is not None:
            self.dispatch(self.on_done, result)
        return True

    def expire(self) -> None:
        """Timer callback."""
        seconds = self.timeout_ms / 1000
        if self.settle(RequestResult(error=RequestTimeoutError(
                f"{self.request.describe()} timed out after {seconds:g}s"))):
            logger.warning(f"{self.request.describe()} timed out after {self.timeout_ms} ms")
            if self.future is not None:
                self.future.cancel()

    def cancel(self) -> bool:
        """Give up on the request without notifying ``on_done``."""
        with self._lock:
            if self._done.is_set():
                return False
            self._cancelled = True
            self._result = RequestResult(error=RequestError(f"{self.request.describe()} cancelled"))
            self._done.set()
        if self._timer is not None:
            self._timer.cancel()
        if self.future is not None:
            self.future.cancel()
        logger.debug(f"{self.request.describe()} cancelled by caller")
        return True


class BoundedRequestClient:
    """Issues backend requests that always settle within ``timeout_ms``."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 executor: Optional[ThreadPoolExecutor] = None,
                 dispatch: Dispatch = call_now,
                 timer_factory: Callable[[float, Callable[[], None]], Any] = threading.Timer,
                 default_headers: Optional[Dict[str, str]] = None):
        self.base_url = base_url.rstrip('/')
        self._session = session or requests.Session()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="patchscope-http")
        self._dispatch = dispatch
        self._timer_factory = timer_factory
        self._default_headers = dict(default_headers or {})
        self._live: List[PendingRequest] = []
        self._live_lock = threading.RLock()
        self._closed = False

    def submit(self, request: BackendRequest, timeout_ms: int,
               on_done: Optional[Callable[[RequestResult], None]] = None) -> PendingRequest:
        """Start ``request`` in the background; ``on_done`` fires once, via dispatch."""
        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")

        pending = PendingRequest(
            request=request,
            timeout_ms=timeout_ms,
            on_done=on_done,
            dispatch=self._dispatch,
            correlation_id=get_correlation_id(),
        )
        with self._live_lock:
            if self._closed:
                raise RequestError(f"{request.describe()} submitted after client was closed")
            timer = self._timer_factory(timeout_ms / 1000, pending.expire)
            if hasattr(timer, "daemon"):
                timer.daemon = True
            pending._timer = timer
            timer.start()
            pending.future = self._executor.submit(self._run, pending)
            self._live = [p for p in self._live if not p.settled]
            if not pending.settled:
                self._live.append(pending)
        return pending

    def fetch_with_timeout(self, request: BackendRequest, timeout_ms: int) -> RequestResult:
        """Blocking form of :meth:`submit`. Never raises for request failures."""
        pending = self.submit(request, timeout_ms)
        return pending.wait()

    def _run(self, pending: PendingRequest) -> None:
        if pending.settled:
            return
        with CorrelationContext(pending.correlation_id):
            try:
                value = self._perform(pending.request, pending.timeout_ms / 1000)
                outcome = RequestResult(value=value)
            except ApplicationError as e:
                outcome = RequestResult(error=e)
            except requests.Timeout as e:
                outcome = RequestResult(error=RequestTimeoutError(f"{pending.request.describe()} timed out: {e}"))
            except requests.RequestException as e:
                outcome = RequestResult(error=NetworkError(f"{pending.request.describe()} failed: {e}"))

            if not pending.settle(outcome):
                logger.debug(f"Discarding late outcome of {pending.request.describe()}")
            elif not outcome.ok:
                logger.warning(f"{pending.request.describe()} failed: {outcome.error}")

    def _perform(self, request: BackendRequest, timeout_s: float) -> Any:
        headers = {**self._default_headers, **(request.headers or {})}
        url = request.url(self.base_url)
        logger.debug(f"{request.method.upper()} {url} params={request.params}")

        response = self._session.request(
            request.method.upper(),
            url,
            params=request.params,
            files=request.files,
            headers=headers or None,
            timeout=timeout_s,
        )

        if not response.ok:
            raise NetworkError(f"HTTP error! status: {response.status_code}", status_code=response.status_code)

        if not request.expect_json:
            return response

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"{request.describe()} returned invalid JSON: {e}")

    def close(self) -> None:
        """Cancel every in-flight request, then release the transport.

        Cancelled requests never invoke their ``on_done``.
        """
        with self._live_lock:
            self._closed = True
            live, self._live = self._live, []
        for pending in live:
            pending.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._session.close()
