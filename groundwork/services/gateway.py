"""
Collaborator gateway.

Every call to the generation model, the typesetting engine and blob storage
goes through ServiceGateway.execute, which applies in order:
  circuit breaker → concurrency semaphore → timeout → retry with backoff.

Only transient faults are retried and counted against the circuit. A
collaborator that answers with a domain error (CompileError, NotFound) is
healthy; the error goes straight back to the caller.

Usage:
    gw = get_gateway()
    candidates = await gw.execute("generation", generator.generate, context, jd)
"""
import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, Optional

from groundwork.config import get_settings
from groundwork.exceptions import GroundworkError, GenerationUnavailable, MalformedOutput, StorageError
from groundwork.utils.logger import logger
from groundwork.utils.metrics import inc, observe


@dataclass(frozen=True)
class ServiceConfig:
    max_concurrent: int = 10
    timeout_seconds: float = 90.0
    max_retries: int = 2
    failure_threshold: int = 5
    recovery_seconds: float = 30.0
    base_backoff_seconds: float = 1.0
    # consecutive successful half-open trial calls needed to close the circuit
    trial_successes: int = 2


def default_config(settings=None) -> Dict[str, ServiceConfig]:
    settings = settings or get_settings()
    return {
        "generation": ServiceConfig(
            max_concurrent=10,
            timeout_seconds=settings.generation_timeout_seconds,
            max_retries=settings.generation_max_retries,
            failure_threshold=5,
            recovery_seconds=30.0,
        ),
        # pdflatex enforces its own timeout; the gateway's is a backstop
        "typesetting": ServiceConfig(
            max_concurrent=2,
            timeout_seconds=settings.pdflatex_timeout_seconds + 15.0,
            max_retries=1,
            failure_threshold=3,
            recovery_seconds=60.0,
        ),
        "storage": ServiceConfig(
            max_concurrent=20,
            timeout_seconds=30.0,
            max_retries=3,
            failure_threshold=5,
            recovery_seconds=30.0,
            base_backoff_seconds=0.5,
        ),
    }


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure breaker.

    OPEN rejects until recovery_seconds have passed, then HALF_OPEN admits a
    single trial call at a time. trial_successes good trials close it again;
    one failed trial reopens it.
    """

    def __init__(self, service: str, config: ServiceConfig):
        self.service = service
        self.config = config
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.opened_at = 0.0
        self.trial_in_flight = False
        self.good_trials = 0

    def _trip(self, reason: str) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = time.monotonic()
        self.trial_in_flight = False
        inc(f"{self.service}.circuit_open")
        logger.warning(
            "circuit.open",
            extra={"service": self.service, "reason": reason, "failures": self.failures},
        )

    def admit(self) -> bool:
        if self.state == CircuitState.OPEN:
            if time.monotonic() - self.opened_at < self.config.recovery_seconds:
                return False
            self.state = CircuitState.HALF_OPEN
            self.good_trials = 0
            logger.info("circuit.half_open", extra={"service": self.service})
        if self.state == CircuitState.HALF_OPEN:
            if self.trial_in_flight:
                return False
            self.trial_in_flight = True
        return True

    def release(self) -> None:
        """Give back an admitted call that ended without an outcome (cancelled)."""
        if self.state == CircuitState.HALF_OPEN:
            self.trial_in_flight = False

    def on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.trial_in_flight = False
            self.good_trials += 1
            if self.good_trials >= self.config.trial_successes:
                self.state = CircuitState.CLOSED
                self.failures = 0
                logger.info("circuit.closed", extra={"service": self.service})
            return
        self.failures = 0

    def on_failure(self) -> None:
        self.failures += 1
        if self.state == CircuitState.HALF_OPEN:
            self._trip("half-open trial call failed")
        elif self.state == CircuitState.CLOSED and self.failures >= self.config.failure_threshold:
            self._trip(f"{self.failures} consecutive failures")


_TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
_TRANSIENT_DOMAIN_ERRORS = (GenerationUnavailable, MalformedOutput, StorageError)


def is_transient(exc: BaseException) -> bool:
    """True for faults worth retrying; False for answers and programming errors."""
    if isinstance(exc, _TRANSIENT_DOMAIN_ERRORS):
        return True
    if isinstance(exc, GroundworkError):
        return False
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if isinstance(status, int):
        return status in _TRANSIENT_STATUS_CODES
    return isinstance(exc, (asyncio.TimeoutError, ConnectionError, OSError))


class CircuitOpenError(GroundworkError):
    """A collaborator's circuit is open; the call was not attempted."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Circuit breaker open for {service}, request rejected")


class ServiceGateway:
    def __init__(self, config: Optional[Dict[str, ServiceConfig]] = None) -> None:
        self.config = default_config()
        self.config.update(config or {})
        self._breakers = {name: CircuitBreaker(name, cfg) for name, cfg in self.config.items()}
        self._semaphores = {name: asyncio.Semaphore(cfg.max_concurrent) for name, cfg in self.config.items()}

    def _backoff(self, cfg: ServiceConfig, attempt: int) -> float:
        base = cfg.base_backoff_seconds * (2 ** attempt)
        return base + random.uniform(0, base * 0.5)

    async def execute(self, service: str, fn: Callable[..., Coroutine], *args: Any, **kwargs: Any) -> Any:
        cfg = self.config.get(service)
        if cfg is None:
            return await fn(*args, **kwargs)

        breaker = self._breakers[service]
        started = time.monotonic()
        attempt = 0
        while True:
            if not breaker.admit():
                inc(f"{service}.rejected")
                raise CircuitOpenError(service)
            try:
                async with self._semaphores[service]:
                    result = await asyncio.wait_for(fn(*args, **kwargs), timeout=cfg.timeout_seconds)
            except asyncio.CancelledError:
                breaker.release()
                raise
            except Exception as exc:
                if not is_transient(exc):
                    breaker.on_success()
                    logger.info(
                        "gateway.answered_error",
                        extra={"service": service, "error_type": type(exc).__name__, "error": str(exc)[:200]},
                    )
                    raise
                breaker.on_failure()
                inc(f"{service}.error")
                if attempt >= cfg.max_retries:
                    logger.error(
                        "gateway.failed",
                        extra={
                            "service": service,
                            "attempt": attempt + 1,
                            "error_type": type(exc).__name__,
                            "error": str(exc)[:200],
                        },
                    )
                    raise
                wait = self._backoff(cfg, attempt)
                attempt += 1
                logger.warning(
                    "gateway.retry",
                    extra={"service": service, "attempt": attempt, "wait_seconds": round(wait, 2), "error": str(exc)[:200]},
                )
                await asyncio.sleep(wait)
                continue

            breaker.on_success()
            inc(f"{service}.success")
            observe(f"{service}.duration_ms", (time.monotonic() - started) * 1000)
            return result

    def describe(self) -> Dict[str, Dict[str, Any]]:
        """Circuit state per collaborator, for /health."""
        return {
            name: {"state": breaker.state.value, "failures": breaker.failures}
            for name, breaker in self._breakers.items()
        }


_gateway: Optional[ServiceGateway] = None


def get_gateway() -> ServiceGateway:
    global _gateway
    if _gateway is None:
        _gateway = ServiceGateway()
    return _gateway
