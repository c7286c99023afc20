"""Bounded polling for resources that become usable some time after creation."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar

from infra_provisioner.engine.errors import ReadinessTimeoutError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_READINESS_TIMEOUT = 600.0
DEFAULT_POLL_INTERVAL = 5.0


def poll_until(
    probe: Callable[[], T | None],
    *,
    address: str,
    timeout: float = DEFAULT_READINESS_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *probe* until it returns a non-``None`` value.

    The probe always runs at least once.  Raises
    :class:`ReadinessTimeoutError` once *timeout* seconds have passed without
    a result.  Exceptions raised by the probe propagate unchanged.
    """
    deadline = clock() + timeout
    attempt = 0
    while True:
        attempt += 1
        result = probe()
        if result is not None:
            logger.debug("%s ready after %d poll(s)", address, attempt)
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            raise ReadinessTimeoutError(address, timeout)
        logger.debug("%s not ready (poll %d), retrying in %.1fs", address, attempt, interval)
        sleep(min(interval, remaining))
