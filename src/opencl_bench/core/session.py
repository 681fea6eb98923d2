"""
Execution session: one OpenCL context and one in-order command queue.

The session is the single owner of every device resource created for a
run. Resources are registered on an exit stack as they are acquired, so
release always happens in reverse acquisition order (kernels, buffers,
queue, context) on every exit path.
"""

import logging
import threading
from contextlib import ExitStack
from typing import Callable, List, Optional

import pyopencl as cl

from ..errors import ContextCreationError, DeviceFaultError, driver_call

logger = logging.getLogger(__name__)


class FaultChannel:
    """Fault messages posted from driver threads, drained by the main thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self._faults: List[str] = []

    def report(self, message: str) -> None:
        """Record a fault. Safe to call from any thread."""
        with self._lock:
            self._faults.append(message)

    @property
    def faulted(self) -> bool:
        with self._lock:
            return bool(self._faults)

    def raise_if_faulted(self) -> None:
        """Raise DeviceFaultError if any fault has been recorded."""
        with self._lock:
            faults = list(self._faults)
        if faults:
            raise DeviceFaultError("Device reported a fault: " + "; ".join(faults))


class Session:
    """OpenCL context plus in-order command queue bound to one device."""

    def __init__(self, device, context, queue, profiling: bool = False):
        self.device = device
        self.context = context
        self.queue = queue
        self.profiling = profiling
        self.faults = FaultChannel()
        self._resources = ExitStack()
        self._released = False

    @classmethod
    def create(cls, device, profiling: bool = False) -> "Session":
        """Create a context and an in-order command queue for ``device``.

        Args:
            device: Selected OpenCL device
            profiling: Enable event profiling on the queue

        Raises:
            ContextCreationError: if the device is None or the driver fails
        """
        if device is None:
            raise ContextCreationError("Cannot create a session without a device")

        with driver_call("clCreateContext", ContextCreationError):
            context = cl.Context(devices=[device])

        # No OUT_OF_ORDER_EXEC_MODE_ENABLE: commands run in submission order.
        properties = cl.command_queue_properties.PROFILING_ENABLE if profiling else 0
        try:
            with driver_call("clCreateCommandQueue", ContextCreationError):
                queue = cl.CommandQueue(context, device=device, properties=properties)
        except ContextCreationError:
            # The traceback keeps this frame alive, and the context with it.
            del context
            raise

        logger.debug("Session created on %s", device.name.strip())
        return cls(device, context, queue, profiling=profiling)

    @property
    def released(self) -> bool:
        return self._released

    def own(self, release: Callable[[], None]) -> None:
        """Register a release callback; callbacks run in reverse order."""
        if self._released:
            raise RuntimeError("Session already released")
        self._resources.callback(release)

    def watch(self, event) -> None:
        """Report abnormal termination of ``event`` into the fault channel.

        The callback runs on a driver thread once the event leaves the
        queue; a negative execution status is an error code.
        """

        def _on_complete(status):
            if status < 0:
                self.faults.report(f"command terminated with status {status}")

        with driver_call("clSetEventCallback"):
            event.set_callback(cl.command_execution_status.COMPLETE, _on_complete)

    def checkpoint(self) -> None:
        """Synchronisation point: surface faults posted by the driver."""
        self.faults.raise_if_faulted()

    def release(self) -> None:
        """Release owned resources, then the queue, then the context."""
        if self._released:
            return
        self._released = True

        try:
            self._resources.close()
            with driver_call("clFinish"):
                self.queue.finish()
        finally:
            self.queue = None
            self.context = None
            logger.debug("Session released")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def create_session(device, profiling: bool = False) -> Session:
    """Create a Session for ``device``."""
    return Session.create(device, profiling=profiling)
