"""
Device buffer allocation.
"""

import logging
from enum import Enum
from typing import Optional

import numpy as np
import pyopencl as cl

from ..errors import AllocationError, driver_call
from .session import Session

logger = logging.getLogger(__name__)

# CL_INVALID_BUFFER_SIZE
INVALID_BUFFER_SIZE = -61


class AccessIntent(Enum):
    """Kernel access declared when a buffer is created."""

    READ_ONLY = "read_only"
    WRITE_ONLY = "write_only"

    @property
    def mem_flags(self) -> int:
        if self is AccessIntent.READ_ONLY:
            return cl.mem_flags.READ_ONLY
        return cl.mem_flags.WRITE_ONLY


class DeviceBuffer:
    """Fixed-size, fixed-intent device memory owned by a session."""

    def __init__(self, cl_buffer, size_bytes: int, access: AccessIntent):
        self.cl_buffer = cl_buffer
        self.size_bytes = size_bytes
        self.access = access

    @property
    def released(self) -> bool:
        return self.cl_buffer is None

    def release(self) -> None:
        if self.cl_buffer is None:
            return
        with driver_call("clReleaseMemObject"):
            self.cl_buffer.release()
        self.cl_buffer = None

    def __repr__(self) -> str:
        return f"DeviceBuffer({self.size_bytes} bytes, {self.access.value})"


def allocate(
    session: Session,
    size_bytes: int,
    access: AccessIntent,
    host_data: Optional[np.ndarray] = None,
) -> DeviceBuffer:
    """Allocate a device buffer, optionally initialised from host memory.

    When ``host_data`` is given the host-to-device copy is part of the
    allocation call itself (``COPY_HOST_PTR``), not a separate enqueue.

    Args:
        session: Owning session
        size_bytes: Buffer size in bytes
        access: Access intent, fixed for the buffer lifetime
        host_data: Optional contiguous host array of exactly ``size_bytes``

    Returns:
        DeviceBuffer registered for release with the session

    Raises:
        AllocationError: for an invalid size or a driver allocation failure
    """
    if size_bytes <= 0:
        raise AllocationError(
            f"Invalid buffer size {size_bytes}",
            code=INVALID_BUFFER_SIZE,
            operation="clCreateBuffer",
        )

    flags = access.mem_flags
    if host_data is not None:
        if host_data.nbytes != size_bytes:
            raise AllocationError(
                f"Host data is {host_data.nbytes} bytes, buffer is {size_bytes}",
                code=INVALID_BUFFER_SIZE,
                operation="clCreateBuffer",
            )
        host_data = np.ascontiguousarray(host_data)
        flags |= cl.mem_flags.COPY_HOST_PTR

    with driver_call("clCreateBuffer", AllocationError):
        if host_data is not None:
            cl_buffer = cl.Buffer(session.context, flags, hostbuf=host_data)
        else:
            cl_buffer = cl.Buffer(session.context, flags, size=size_bytes)

    buffer = DeviceBuffer(cl_buffer, size_bytes, access)
    session.own(buffer.release)
    logger.debug("Allocated %r", buffer)
    return buffer
