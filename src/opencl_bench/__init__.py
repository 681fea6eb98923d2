"""
OpenCL Benchmark

Runs an element-wise a+b kernel through OpenCL, reports kernel time,
throughput and memory bandwidth, and validates the device result
against a CPU reference.
"""

__version__ = "0.1.0"

from .config import BenchmarkConfig
from .core.benchmark_runner import BenchmarkRunner
from .core.device_info import DeviceInfo
from .core.metrics import MetricsCollector

__all__ = [
    "BenchmarkConfig",
    "BenchmarkRunner",
    "DeviceInfo",
    "MetricsCollector",
]
