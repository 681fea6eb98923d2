"""
Device-to-host result transfer and validation against the host reference.
"""

import logging
import time
from dataclasses import dataclass

import numpy as np
import pyopencl as cl

from ..errors import ResultMismatchError, driver_call
from .buffers import DeviceBuffer
from .metrics import LapMeasurement, LapTimer, TimingSummary
from .session import Session

logger = logging.getLogger(__name__)


def read_back(
    session: Session, buffer: DeviceBuffer, host_destination: np.ndarray
) -> LapMeasurement:
    """Blocking copy of ``buffer`` into ``host_destination``.

    Raises:
        ValueError: if the destination size differs from the buffer size
        DriverError: if the copy fails
        DeviceFaultError: if the driver reported a fault
    """
    if host_destination.nbytes != buffer.size_bytes:
        raise ValueError(
            f"Destination is {host_destination.nbytes} bytes, "
            f"buffer is {buffer.size_bytes}"
        )

    start = time.perf_counter()
    with driver_call("clEnqueueReadBuffer"):
        event = cl.enqueue_copy(
            session.queue, host_destination, buffer.cl_buffer, is_blocking=True
        )
    end = time.perf_counter()

    device_duration = None
    if session.profiling:
        with driver_call("clGetEventProfilingInfo"):
            device_duration = (event.profile.end - event.profile.start) * 1e-9

    session.checkpoint()
    return LapMeasurement(start, end, device_duration)


def read_back_trials(
    session: Session,
    buffer: DeviceBuffer,
    host_destination: np.ndarray,
    trials: int,
) -> TimingSummary:
    """Repeat ``read_back`` and summarize the trimmed lap times."""
    timer = LapTimer()
    for _ in range(trials):
        timer.record(read_back(session, buffer, host_destination))
    return timer.summary()


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of a successful comparison."""

    checked: int
    matched: bool = True


def validate(result: np.ndarray, reference: np.ndarray) -> ValidationOutcome:
    """Compare device output with the host reference, exactly.

    No tolerance is applied: the reference uses the same floating-point
    operation and rounding as the kernel.

    Raises:
        ResultMismatchError: at the first differing index
    """
    if result.shape != reference.shape:
        index = min(result.size, reference.size)
        raise ResultMismatchError(
            index,
            f"shape {reference.shape}",
            f"shape {result.shape}",
        )

    mismatches = np.flatnonzero(result != reference)
    if mismatches.size:
        index = int(mismatches[0])
        raise ResultMismatchError(index, reference.flat[index], result.flat[index])

    logger.debug("Validated %d elements", result.size)
    return ValidationOutcome(checked=int(result.size))
