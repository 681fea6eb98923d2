"""
Shared fixtures and driver doubles.
"""

from unittest.mock import Mock

import pyopencl as cl
import pytest
from pyopencl import _cl

from opencl_bench.core.session import Session


class FakeClError(cl.RuntimeError):
    """pyopencl error carrying a chosen status code.

    Built the way pyopencl builds its own errors: ``args[0]`` is a driver
    error record, so ``what`` is not a string.
    """

    def __init__(self, code, what="fake driver failure", routine="clFake"):
        super().__init__(_cl._ErrorRecord(msg=what, code=code, routine=routine))


class FakeDevice:
    def __init__(self, name, device_type=cl.device_type.GPU, vendor="Fake Vendor"):
        self.name = name
        self.type = device_type
        self.vendor = vendor
        self.version = "OpenCL 3.0"
        self.driver_version = "1.0"
        self.max_compute_units = 8
        self.max_work_group_size = 1024
        self.global_mem_size = 4 * 1024**3
        self.max_mem_alloc_size = 1024**3
        self.address_bits = 64

    def __repr__(self):
        return f"FakeDevice({self.name!r})"


class FakePlatform:
    """Platform whose get_devices behaves like pyopencl's."""

    def __init__(self, name, devices):
        self.name = name
        self._devices = devices

    def get_devices(self, device_type=cl.device_type.ALL):
        found = [d for d in self._devices if d.type & device_type]
        if not found:
            raise FakeClError(-1, "DEVICE_NOT_FOUND", "clGetDeviceIDs")
        return found


@pytest.fixture
def gpu_platforms():
    """Two platforms: an Intel CPU/GPU one and an NVIDIA GPU one."""
    return [
        FakePlatform(
            "Intel(R) OpenCL",
            [
                FakeDevice("Intel(R) Core(TM) i7", cl.device_type.CPU),
                FakeDevice("Intel(R) UHD Graphics 630"),
            ],
        ),
        FakePlatform("NVIDIA CUDA", [FakeDevice("NVIDIA GeForce RTX 3080")]),
    ]


@pytest.fixture
def cpu_only_platforms():
    return [
        FakePlatform(
            "Portable Computing Language",
            [FakeDevice("pthread-AMD Ryzen 9", cl.device_type.CPU)],
        )
    ]


@pytest.fixture
def session():
    """Session over mocked context and queue."""
    return Session(FakeDevice("Fake GPU"), Mock(name="context"), Mock(name="queue"))


@pytest.fixture
def profiling_session():
    return Session(
        FakeDevice("Fake GPU"), Mock(name="context"), Mock(name="queue"), profiling=True
    )


def opencl_available() -> bool:
    """True when at least one real OpenCL platform with a device exists."""
    try:
        return any(platform.get_devices() for platform in cl.get_platforms())
    except cl.Error:
        return False
