"""
Kernel source loading, program build and kernel entry points.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pyopencl as cl

from ..errors import (
    BuildFailure,
    EmptySourceError,
    EntryPointNotFoundError,
    KernelSourceNotFoundError,
    driver_call,
)
from .session import Session

logger = logging.getLogger(__name__)

# Logs at or below this length carry no diagnostics (typically "\n\0").
TRIVIAL_LOG_LENGTH = 2

# CL_BUILD_PROGRAM_FAILURE, CL_INVALID_KERNEL_NAME
BUILD_PROGRAM_FAILURE = -11
INVALID_KERNEL_NAME = -46

# Needed for kernel argument introspection.
KERNEL_ARG_INFO_OPTION = "-cl-kernel-arg-info"

SCALAR_TYPE_SIZES = {
    "char": 1,
    "uchar": 1,
    "unsigned char": 1,
    "short": 2,
    "ushort": 2,
    "unsigned short": 2,
    "half": 2,
    "int": 4,
    "uint": 4,
    "unsigned int": 4,
    "float": 4,
    "long": 8,
    "ulong": 8,
    "unsigned long": 8,
    "double": 8,
}


def load_kernel_source(path: Union[str, Path]) -> str:
    """Read kernel source text.

    Relative paths resolve against the current working directory.

    Raises:
        KernelSourceNotFoundError: if the file does not exist
        EmptySourceError: if the file is empty
    """
    path = Path(path)
    if not path.is_file():
        raise KernelSourceNotFoundError(
            f"Kernel source {path} not found in {Path.cwd()}. "
            "Is the working directory configured properly?"
        )
    source = path.read_text()
    if not source:
        raise EmptySourceError(
            f"Empty source file {path}! Is the working directory configured properly?"
        )
    return source


class BuildStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class BuildResult:
    """Outcome of building a program for one device."""

    status: BuildStatus
    log: str = ""
    code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status is BuildStatus.SUCCESS

    @property
    def has_diagnostics(self) -> bool:
        return len(self.log) > TRIVIAL_LOG_LENGTH

    @property
    def message(self) -> str:
        """Text reported to the user: the log, or a plain success message."""
        if self.has_diagnostics:
            return f"Log:\n{self.log.strip()}"
        if self.succeeded:
            return "Compiled successfully."
        return "Build failed without a log."

    def raise_for_status(self) -> None:
        """Raise BuildFailure if the build failed."""
        if not self.succeeded:
            raise BuildFailure(
                "Program build failed",
                log=self.log,
                code=self.code if self.code is not None else BUILD_PROGRAM_FAILURE,
                operation="clBuildProgram",
            )


class Program:
    """Kernel source compiled within one session."""

    def __init__(self, session: Session, source: str, cl_program):
        self.session = session
        self.source = source
        self.cl_program = cl_program
        self.build_result: Optional[BuildResult] = None

    @property
    def built(self) -> bool:
        return self.build_result is not None and self.build_result.succeeded


def compile_program(session: Session, source: str) -> Program:
    """Create a program from source text within ``session``.

    Raises:
        EmptySourceError: if ``source`` is empty; no device call is made
    """
    if not source:
        raise EmptySourceError(
            "Empty kernel source! Is the working directory configured properly?"
        )

    with driver_call("clCreateProgramWithSource"):
        cl_program = cl.Program(session.context, source)
    return Program(session, source, cl_program)


def build_program(
    program: Program, device, options: Sequence[str] = ()
) -> BuildResult:
    """Build ``program`` for ``device`` and collect the build log.

    The log is returned on success as well: backends report useful
    information there (e.g. the vectorization width on CPU drivers).
    Compiled binaries are not cached between runs.
    """
    options = list(options)
    if KERNEL_ARG_INFO_OPTION not in options:
        options.append(KERNEL_ARG_INFO_OPTION)

    try:
        program.cl_program.build(options=options, devices=[device], cache_dir=False)
    except cl.Error as e:
        # The program has no build info after a failure; pyopencl puts the
        # compiler log into the error text instead.
        result = BuildResult(
            BuildStatus.FAILURE,
            log=str(e),
            code=getattr(e, "code", None),
        )
    else:
        with driver_call("clGetProgramBuildInfo"):
            log = program.cl_program.get_build_info(device, cl.program_build_info.LOG)
        result = BuildResult(BuildStatus.SUCCESS, log=log or "")

    program.build_result = result
    logger.debug("Build %s, log length %d", result.status.value, len(result.log))
    return result


class ArgKind(Enum):
    BUFFER = "buffer"
    SCALAR = "scalar"


@dataclass(frozen=True)
class ArgSpec:
    """Expected kernel argument at one position."""

    kind: ArgKind
    size: int
    writes: bool = False
    name: str = ""

    @classmethod
    def buffer(cls, writes: bool = False, name: str = "", pointer_size: int = 8):
        return cls(ArgKind.BUFFER, pointer_size, writes=writes, name=name)

    @classmethod
    def scalar(cls, dtype, name: str = ""):
        return cls(ArgKind.SCALAR, np.dtype(dtype).itemsize, name=name)


@dataclass
class KernelSignature:
    """Ordered argument expectations of a kernel."""

    args: List[ArgSpec] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.args)

    def __getitem__(self, index: int) -> ArgSpec:
        return self.args[index]

    @classmethod
    def from_kernel(cls, cl_kernel, device) -> "KernelSignature":
        """Introspect the signature from the driver's kernel argument info.

        Requires the program to be built with ``-cl-kernel-arg-info``.
        """
        pointer_size = device.address_bits // 8
        with driver_call("clGetKernelArgInfo"):
            num_args = cl_kernel.get_info(cl.kernel_info.NUM_ARGS)
            args = []
            for index in range(num_args):
                name = cl_kernel.get_arg_info(index, cl.kernel_arg_info.NAME)
                type_name = cl_kernel.get_arg_info(index, cl.kernel_arg_info.TYPE_NAME)
                address = cl_kernel.get_arg_info(
                    index, cl.kernel_arg_info.ADDRESS_QUALIFIER
                )
                qualifiers = cl_kernel.get_arg_info(
                    index, cl.kernel_arg_info.TYPE_QUALIFIER
                )
                args.append(
                    _arg_spec_from_info(
                        name, type_name, address, qualifiers, pointer_size
                    )
                )
        return cls(args)


def _arg_spec_from_info(name, type_name, address, qualifiers, pointer_size) -> ArgSpec:
    type_name = type_name.strip().rstrip("\0")
    if type_name.endswith("*"):
        const = bool(qualifiers & cl.kernel_arg_type_qualifier.CONST)
        read_only_space = address == cl.kernel_arg_address_qualifier.CONSTANT
        return ArgSpec.buffer(
            writes=not (const or read_only_space), name=name, pointer_size=pointer_size
        )
    size = SCALAR_TYPE_SIZES.get(type_name)
    if size is None:
        size = pointer_size if type_name == "size_t" else 0
    return ArgSpec(ArgKind.SCALAR, size, name=name)


class KernelInvocation:
    """Kernel entry point with positional argument bindings.

    Bindings persist across launches until rebound.
    """

    def __init__(self, cl_kernel, name: str, signature: KernelSignature):
        self.cl_kernel = cl_kernel
        self.name = name
        self.signature = signature
        self.bindings: Dict[int, Any] = {}

    @property
    def fully_bound(self) -> bool:
        return len(self.bindings) == len(self.signature)

    def release(self) -> None:
        self.cl_kernel = None
        self.bindings.clear()


def create_entry_point(
    program: Program, name: str, signature: Optional[KernelSignature] = None
) -> KernelInvocation:
    """Create the kernel ``name`` from a built program.

    Args:
        program: Built program
        name: Kernel function name
        signature: Declared signature; introspected from the driver if None

    Raises:
        EntryPointNotFoundError: if the program has no such kernel
    """
    try:
        with driver_call("clCreateKernel", EntryPointNotFoundError):
            cl_kernel = cl.Kernel(program.cl_program, name)
    except EntryPointNotFoundError as e:
        raise EntryPointNotFoundError(
            f"Kernel '{name}' not found in program",
            code=e.code if e.code is not None else INVALID_KERNEL_NAME,
            operation="clCreateKernel",
            location=e.location,
        ) from e

    if signature is None:
        signature = KernelSignature.from_kernel(cl_kernel, program.session.device)

    invocation = KernelInvocation(cl_kernel, name, signature)
    program.session.own(invocation.release)
    return invocation
