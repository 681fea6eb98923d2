"""
Performance metrics collection and analysis utilities.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
from rich.console import Console
from rich.table import Table

GIGA = 1e9
GIBIBYTE = 1024**3


@dataclass(frozen=True)
class LapMeasurement:
    """One timed repetition of an operation (perf_counter seconds)."""

    start: float
    end: float
    device_duration: Optional[float] = None  # seconds, from event profiling

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class TimingSummary:
    """Trimmed statistics over a lap sequence."""

    mean: float  # seconds
    std: float  # seconds
    laps: List[float]  # kept laps, sorted
    total_laps: int
    device_mean: Optional[float] = None  # seconds

    @property
    def discarded(self) -> int:
        return self.total_laps - len(self.laps)


def trimmed_laps(durations: List[float]) -> List[float]:
    """Sorted durations without the lowest and highest 20%.

    ``len // 5`` laps are dropped at each end, so sequences shorter than
    five are kept whole.
    """
    ordered = sorted(durations)
    cut = len(ordered) // 5
    return ordered[cut : len(ordered) - cut]


def summarize_laps(
    durations: List[float], device_durations: Optional[List[float]] = None
) -> TimingSummary:
    """Mean and standard deviation over the trimmed laps."""
    if not durations:
        raise ValueError("No laps recorded")

    kept = trimmed_laps(durations)
    device_mean = None
    if device_durations:
        device_mean = float(np.mean(trimmed_laps(device_durations)))

    return TimingSummary(
        mean=float(np.mean(kept)),
        std=float(np.std(kept)),
        laps=kept,
        total_laps=len(durations),
        device_mean=device_mean,
    )


class LapTimer:
    """Wall-clock stopwatch split into laps.

    The first lap starts when the timer is created (or restarted);
    ``next_lap`` closes the current lap and starts the next one.
    """

    def __init__(self):
        self._laps: List[LapMeasurement] = []
        self._lap_start = time.perf_counter()

    def restart(self) -> None:
        self._laps.clear()
        self._lap_start = time.perf_counter()

    def next_lap(self, device_duration: Optional[float] = None) -> LapMeasurement:
        now = time.perf_counter()
        lap = LapMeasurement(self._lap_start, now, device_duration)
        self._laps.append(lap)
        self._lap_start = now
        return lap

    def record(self, lap: LapMeasurement) -> None:
        """Add a lap measured elsewhere."""
        self._laps.append(lap)
        self._lap_start = time.perf_counter()

    @property
    def laps(self) -> List[LapMeasurement]:
        return list(self._laps)

    def summary(self) -> TimingSummary:
        device = [lap.device_duration for lap in self._laps]
        return summarize_laps(
            [lap.duration for lap in self._laps],
            device if all(d is not None for d in device) else None,
        )

    def lap_avg(self) -> float:
        return self.summary().mean

    def lap_std(self) -> float:
        return self.summary().std


def throughput_gops(element_count: int, seconds: float) -> float:
    """Billions of element operations per second."""
    return element_count / seconds / GIGA


def binary_op_bytes(element_count: int, element_size: int) -> int:
    """Bytes moved by an element-wise binary op: two reads and one write."""
    return 3 * element_count * element_size


def bandwidth_gbs(num_bytes: int, seconds: float) -> float:
    """Bandwidth in GB/s, with 2**30 bytes per GB."""
    return num_bytes / seconds / GIBIBYTE


@dataclass
class BenchmarkResult:
    """Container for benchmark results."""

    name: str
    device: str
    element_count: int
    kernel_time: TimingSummary
    throughput: float  # Gops/s
    bandwidth: float  # GB/s
    transfer_time: Optional[TimingSummary] = None
    transfer_bandwidth: Optional[float] = None  # GB/s
    validated: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


class MetricsCollector:
    """Collect and report benchmark results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._results: List[BenchmarkResult] = []

    def add_result(self, result: BenchmarkResult) -> None:
        self._results.append(result)

    def get_results(self) -> List[BenchmarkResult]:
        """Get all collected benchmark results."""
        return self._results.copy()

    def clear_results(self) -> None:
        """Clear all collected results."""
        self._results.clear()

    def print_results(self) -> None:
        """Print formatted benchmark results."""
        if not self._results:
            self.console.print("No benchmark results available.")
            return

        table = Table(title="Benchmark Results")
        table.add_column("Benchmark", style="cyan")
        table.add_column("Device", style="green")
        table.add_column("N", justify="right")
        table.add_column("Kernel (s)", style="yellow")
        table.add_column("GFlops", style="blue")
        table.add_column("GB/s", style="red")
        table.add_column("Transfer (s)", style="yellow")
        table.add_column("VRAM -> RAM GB/s", style="red")
        table.add_column("Valid", style="magenta")

        for result in self._results:
            transfer = "N/A"
            if result.transfer_time is not None:
                transfer = (
                    f"{result.transfer_time.mean:.6f} ± {result.transfer_time.std:.6f}"
                )
            transfer_bw = (
                f"{result.transfer_bandwidth:.2f}"
                if result.transfer_bandwidth is not None
                else "N/A"
            )
            table.add_row(
                result.name,
                result.device,
                f"{result.element_count:,}",
                f"{result.kernel_time.mean:.6f} ± {result.kernel_time.std:.6f}",
                f"{result.throughput:.2f}",
                f"{result.bandwidth:.2f}",
                transfer,
                transfer_bw,
                "yes" if result.validated else "no",
            )

        self.console.print(table)
