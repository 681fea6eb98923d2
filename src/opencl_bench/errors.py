"""
Error hierarchy for the OpenCL benchmark harness.

Every failure in the pipeline is fatal: nothing here is retried or
recovered locally. Errors that originate from a device API call derive
from DriverError and carry the numeric OpenCL status code, the name of
the failing operation and the call site, so the code can be looked up in
the vendor's cl.h error table.
"""

import os
import traceback
from contextlib import contextmanager
from typing import Iterator, Optional, Type

import pyopencl as cl

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


class BenchmarkError(Exception):
    """Base class for all benchmark errors."""


class ConfigurationError(BenchmarkError):
    """Invalid benchmark configuration."""


class DriverError(BenchmarkError):
    """A device API call returned a non-success status.

    Attributes:
        code: OpenCL status code (negative integer), if known
        operation: Name of the failing operation
        location: ``file:line`` of the call site, if known
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        operation: Optional[str] = None,
        location: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.operation = operation
        self.location = location
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation: {self.operation}")
        if self.code is not None:
            parts.append(f"OpenCL error code {self.code}")
        if self.location:
            parts.append(f"at {self.location}")
        return " | ".join(parts)


class NoDeviceAvailableError(BenchmarkError):
    """No device matched the selection policy."""


class ContextCreationError(DriverError):
    """Context or command queue could not be created."""


class AllocationError(DriverError):
    """Device buffer allocation failed (bad size or out of device memory)."""


class EmptySourceError(BenchmarkError):
    """Kernel source is empty, usually a wrong working directory."""


class KernelSourceNotFoundError(EmptySourceError):
    """Kernel source file does not exist."""


class BuildFailure(DriverError):
    """Program failed to build; ``log`` holds the compiler output."""

    def __init__(self, message: str, log: str = "", **kwargs):
        self.log = log
        super().__init__(message, **kwargs)

    def _format_message(self) -> str:
        text = super()._format_message()
        if self.log:
            text += f"\nBuild log:\n{self.log}"
        return text


class EntryPointNotFoundError(DriverError):
    """Compiled program has no kernel with the requested name."""


class ArgumentBindingError(DriverError):
    """Kernel argument does not match the kernel signature."""


class DeviceFaultError(BenchmarkError):
    """The driver reported an asynchronous fault (e.g. out of resources)."""


class ResultMismatchError(BenchmarkError):
    """Device result differs from the host reference."""

    def __init__(self, index: int, expected, actual):
        self.index = index
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"CPU and GPU results differ at index {index}: "
            f"expected {expected!r}, got {actual!r}"
        )


def _call_site(tb) -> Optional[str]:
    """Innermost frame of this package (other than this module) in ``tb``."""
    for frame in reversed(traceback.extract_tb(tb)):
        filename = os.path.abspath(frame.filename)
        if filename.startswith(_PACKAGE_DIR) and filename != os.path.abspath(__file__):
            return f"{os.path.relpath(filename, _PACKAGE_DIR)}:{frame.lineno}"
    return None


@contextmanager
def driver_call(
    operation: str, error_cls: Type[DriverError] = DriverError
) -> Iterator[None]:
    """Translate ``pyopencl.Error`` raised inside the block into ``error_cls``.

    Example:
        with driver_call("clCreateBuffer", AllocationError):
            buf = cl.Buffer(ctx, flags, size)
    """
    try:
        yield
    except cl.Error as e:
        # e.what is a driver error record, str(e) is its formatted text.
        raise error_cls(
            str(e),
            code=getattr(e, "code", None),
            operation=operation,
            location=_call_site(e.__traceback__),
        ) from e
