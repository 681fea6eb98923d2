"""
Core benchmark infrastructure.
"""

from .benchmark_runner import BenchmarkRunner
from .buffers import AccessIntent, DeviceBuffer
from .device_info import DeviceClass, DeviceInfo, DeviceSelection
from .kernel import BuildResult, KernelInvocation, KernelSignature
from .metrics import BenchmarkResult, LapTimer, MetricsCollector, TimingSummary
from .session import Session

__all__ = [
    "AccessIntent",
    "BenchmarkResult",
    "BenchmarkRunner",
    "BuildResult",
    "DeviceBuffer",
    "DeviceClass",
    "DeviceInfo",
    "DeviceSelection",
    "KernelInvocation",
    "KernelSignature",
    "LapTimer",
    "MetricsCollector",
    "Session",
    "TimingSummary",
]
