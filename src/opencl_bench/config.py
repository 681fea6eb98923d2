"""
Benchmark configuration.
"""

from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Tuple

from .errors import ConfigurationError

DEFAULT_ELEMENT_COUNT = 100 * 1000 * 1000
DEFAULT_LOCAL_SIZE = 128
DEFAULT_TRIALS = 20
DEFAULT_DEVICE_PREFERENCE = "nvidia"
DEFAULT_KERNEL_NAME = "aplusb"


def default_kernel_path() -> Path:
    """Path of the a+b kernel shipped with the package."""
    return Path(str(resources.files("opencl_bench") / "kernels" / "aplusb.cl"))


@dataclass
class BenchmarkConfig:
    """Parameters of one benchmark run."""

    element_count: int = DEFAULT_ELEMENT_COUNT
    local_size: int = DEFAULT_LOCAL_SIZE
    kernel_trials: int = DEFAULT_TRIALS
    transfer_trials: int = DEFAULT_TRIALS
    device_preference: str = DEFAULT_DEVICE_PREFERENCE
    allow_cpu_fallback: bool = True
    kernel_path: Path = field(default_factory=default_kernel_path)
    kernel_name: str = DEFAULT_KERNEL_NAME
    build_options: Tuple[str, ...] = ()
    profiling: bool = True

    def __post_init__(self):
        self.kernel_path = Path(self.kernel_path)
        self.build_options = tuple(self.build_options)

    def validate(self) -> "BenchmarkConfig":
        """Check value ranges.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: if any count or size is not positive
        """
        for name in ("element_count", "local_size", "kernel_trials", "transfer_trials"):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        if not self.kernel_name:
            raise ConfigurationError("kernel_name must not be empty")
        return self
