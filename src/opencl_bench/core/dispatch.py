"""
Kernel argument binding, launch and per-launch timing.
"""

import logging
import time
from typing import Any, Sequence

import numpy as np
import pyopencl as cl

from ..errors import ArgumentBindingError, driver_call
from .buffers import AccessIntent, DeviceBuffer
from .kernel import ArgKind, KernelInvocation
from .metrics import LapMeasurement, LapTimer, TimingSummary
from .session import Session

logger = logging.getLogger(__name__)

# CL_INVALID_ARG_VALUE, CL_INVALID_ARG_SIZE, CL_INVALID_KERNEL_ARGS
INVALID_ARG_VALUE = -50
INVALID_ARG_SIZE = -51
INVALID_KERNEL_ARGS = -52


def round_up_global_size(element_count: int, local_size: int) -> int:
    """Smallest multiple of ``local_size`` not below ``element_count``."""
    if local_size <= 0:
        raise ValueError(f"local_size must be positive, got {local_size}")
    return (element_count + local_size - 1) // local_size * local_size


def _binding_error(invocation: KernelInvocation, index: int, reason: str, code: int):
    spec = invocation.signature[index]
    label = f"'{spec.name}'" if spec.name else f"#{index}"
    return ArgumentBindingError(
        f"Argument {label} of kernel '{invocation.name}': {reason}",
        code=code,
        operation=f"clSetKernelArg({index})",
    )


def bind_argument(invocation: KernelInvocation, index: int, value: Any) -> None:
    """Bind one positional argument, checking it against the signature.

    Raises:
        ArgumentBindingError: on a kind, size or access-intent mismatch
    """
    if not 0 <= index < len(invocation.signature):
        raise ArgumentBindingError(
            f"Kernel '{invocation.name}' takes {len(invocation.signature)} "
            f"arguments, no position {index}",
            code=INVALID_ARG_VALUE,
            operation=f"clSetKernelArg({index})",
        )
    spec = invocation.signature[index]

    if isinstance(value, DeviceBuffer):
        if spec.kind is not ArgKind.BUFFER:
            raise _binding_error(
                invocation, index, "expected a scalar, got a buffer", INVALID_ARG_SIZE
            )
        if value.released:
            raise _binding_error(
                invocation, index, "buffer already released", INVALID_ARG_VALUE
            )
        if spec.writes and value.access is AccessIntent.READ_ONLY:
            raise _binding_error(
                invocation,
                index,
                "read-only buffer bound to a parameter the kernel writes",
                INVALID_ARG_VALUE,
            )
        if not spec.writes and value.access is AccessIntent.WRITE_ONLY:
            raise _binding_error(
                invocation,
                index,
                "write-only buffer bound to a parameter the kernel reads",
                INVALID_ARG_VALUE,
            )
        cl_value = value.cl_buffer
    elif isinstance(value, np.generic):
        if spec.kind is not ArgKind.SCALAR:
            raise _binding_error(
                invocation, index, "expected a buffer, got a scalar", INVALID_ARG_VALUE
            )
        if spec.size and value.nbytes != spec.size:
            raise _binding_error(
                invocation,
                index,
                f"{value.dtype} is {value.nbytes} bytes, kernel expects {spec.size}",
                INVALID_ARG_SIZE,
            )
        cl_value = value
    else:
        raise _binding_error(
            invocation,
            index,
            f"{type(value).__name__} has no declared size, "
            "pass a DeviceBuffer or a numpy scalar (e.g. numpy.uint32)",
            INVALID_ARG_SIZE,
        )

    with driver_call(f"clSetKernelArg({index})", ArgumentBindingError):
        invocation.cl_kernel.set_arg(index, cl_value)
    invocation.bindings[index] = value


def bind_arguments(invocation: KernelInvocation, args: Sequence[Any]) -> None:
    """Bind all arguments by position.

    Raises:
        ArgumentBindingError: on a count mismatch or any per-argument mismatch
    """
    if len(args) != len(invocation.signature):
        raise ArgumentBindingError(
            f"Kernel '{invocation.name}' takes {len(invocation.signature)} "
            f"arguments, got {len(args)}",
            code=INVALID_KERNEL_ARGS,
            operation="clSetKernelArg",
        )
    for index, value in enumerate(args):
        bind_argument(invocation, index, value)


def dispatch(
    session: Session,
    invocation: KernelInvocation,
    global_size: int,
    local_size: int,
) -> LapMeasurement:
    """Launch the kernel once and block until it completes.

    The global size is padded up to a multiple of ``local_size`` so every
    work-group is full; the kernel must ignore the padding lanes.

    Returns:
        LapMeasurement of the launch, with device time when profiling is on

    Raises:
        ArgumentBindingError: if some argument is unbound
        DriverError: if the launch or the wait fails
        DeviceFaultError: if the driver reported a fault
    """
    if not invocation.fully_bound:
        positions = set(range(len(invocation.signature)))
        missing = sorted(positions - set(invocation.bindings))
        raise ArgumentBindingError(
            f"Kernel '{invocation.name}' has unbound arguments {missing}",
            code=INVALID_KERNEL_ARGS,
            operation="clEnqueueNDRangeKernel",
        )

    padded = round_up_global_size(global_size, local_size)

    start = time.perf_counter()
    with driver_call("clEnqueueNDRangeKernel"):
        event = cl.enqueue_nd_range_kernel(
            session.queue, invocation.cl_kernel, (padded,), (local_size,)
        )
    session.watch(event)
    with driver_call("clWaitForEvents"):
        event.wait()
    end = time.perf_counter()

    device_duration = None
    if session.profiling:
        with driver_call("clGetEventProfilingInfo"):
            device_duration = (event.profile.end - event.profile.start) * 1e-9

    session.checkpoint()
    return LapMeasurement(start, end, device_duration)


def run_trials(
    session: Session,
    invocation: KernelInvocation,
    global_size: int,
    local_size: int,
    trials: int,
) -> TimingSummary:
    """Dispatch ``trials`` times and summarize the trimmed lap times."""
    timer = LapTimer()
    for _ in range(trials):
        timer.record(dispatch(session, invocation, global_size, local_size))

    summary = timer.summary()
    logger.debug(
        "Kernel laps: %d recorded, %d discarded", summary.total_laps, summary.discarded
    )
    return summary
