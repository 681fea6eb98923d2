"""
Main benchmark runner orchestrating the a+b pipeline.
"""

import logging
from typing import List, Optional

import numpy as np
from rich.console import Console

from ..config import DEFAULT_KERNEL_NAME, BenchmarkConfig
from . import buffers, dispatch, kernel, transfer
from .buffers import AccessIntent
from .data import ELEMENT_DTYPE, generate_inputs, reference_add
from .device_info import DeviceInfo, DeviceSelection, choose_device, list_platforms
from .kernel import ArgSpec, KernelSignature
from .metrics import (
    BenchmarkResult,
    MetricsCollector,
    bandwidth_gbs,
    binary_op_bytes,
    throughput_gops,
)
from .session import Session

logger = logging.getLogger(__name__)


def aplusb_signature(pointer_size: int = 8) -> KernelSignature:
    """Signature of ``aplusb(const float*, const float*, float*, uint)``."""
    return KernelSignature(
        [
            ArgSpec.buffer(name="as", pointer_size=pointer_size),
            ArgSpec.buffer(name="bs", pointer_size=pointer_size),
            ArgSpec.buffer(writes=True, name="cs", pointer_size=pointer_size),
            ArgSpec.scalar(np.uint32, name="n"),
        ]
    )


class BenchmarkRunner:
    """Main benchmark runner class."""

    def __init__(
        self,
        config: Optional[BenchmarkConfig] = None,
        console: Optional[Console] = None,
    ):
        """Initialize benchmark runner.

        Args:
            config: Benchmark parameters, defaults to the reference workload
            console: rich console for the report
        """
        self.config = (config or BenchmarkConfig()).validate()
        self.console = console or Console()
        self.device_info = DeviceInfo()
        self.metrics_collector = MetricsCollector(self.console)

    def select_device(self) -> DeviceSelection:
        """Select the device according to the configured preference."""
        return choose_device(
            list_platforms(),
            self.config.device_preference,
            allow_cpu_fallback=self.config.allow_cpu_fallback,
        )

    def run(self, selection: Optional[DeviceSelection] = None) -> BenchmarkResult:
        """Run the whole pipeline once.

        Args:
            selection: Device to use; selected from the config if None

        Returns:
            BenchmarkResult of the validated run

        Raises:
            BenchmarkError: any failure aborts the run; session resources
                are released before it propagates
        """
        config = self.config
        n = config.element_count

        if selection is None:
            selection = self.select_device()
        self.device_info.print_device_info(selection, self.console)

        source = kernel.load_kernel_source(config.kernel_path)

        a, b = generate_inputs(n)
        c = np.zeros(n, dtype=ELEMENT_DTYPE)
        self.console.print(f"Data generated for n={n:,}!")

        nbytes = n * np.dtype(ELEMENT_DTYPE).itemsize

        with Session.create(selection.device, profiling=config.profiling) as session:
            as_gpu = buffers.allocate(session, nbytes, AccessIntent.READ_ONLY, a)
            bs_gpu = buffers.allocate(session, nbytes, AccessIntent.READ_ONLY, b)
            cs_gpu = buffers.allocate(session, nbytes, AccessIntent.WRITE_ONLY)

            program = kernel.compile_program(session, source)
            build = kernel.build_program(
                program, selection.device, config.build_options
            )
            self.console.print(build.message)
            build.raise_for_status()

            signature = None
            if config.kernel_name == DEFAULT_KERNEL_NAME:
                signature = aplusb_signature(selection.device.address_bits // 8)
            invocation = kernel.create_entry_point(
                program, config.kernel_name, signature
            )
            dispatch.bind_arguments(invocation, [as_gpu, bs_gpu, cs_gpu, np.uint32(n)])

            global_size = dispatch.round_up_global_size(n, config.local_size)
            logger.info(
                "Start working: global size %d, work-group size %d",
                global_size,
                config.local_size,
            )
            kernel_time = dispatch.run_trials(
                session, invocation, n, config.local_size, config.kernel_trials
            )
            logger.info("End working")

            throughput = throughput_gops(n, kernel_time.mean)
            bandwidth = bandwidth_gbs(
                binary_op_bytes(n, np.dtype(ELEMENT_DTYPE).itemsize), kernel_time.mean
            )
            self.console.print(
                f"Kernel average time: {kernel_time.mean:.6f}+-{kernel_time.std:.6f} s"
            )
            if kernel_time.device_mean is not None:
                self.console.print(
                    f"Kernel average device time: {kernel_time.device_mean:.6f} s"
                )
            self.console.print(f"GFlops: {throughput:.3f}")
            self.console.print(f"VRAM bandwidth: {bandwidth:.3f} GB/s")

            transfer_time = transfer.read_back_trials(
                session, cs_gpu, c, config.transfer_trials
            )
            transfer_bandwidth = bandwidth_gbs(nbytes, transfer_time.mean)
            self.console.print(
                "Result data transfer time: "
                f"{transfer_time.mean:.6f}+-{transfer_time.std:.6f} s"
            )
            self.console.print(f"VRAM -> RAM bandwidth: {transfer_bandwidth:.3f} GB/s")

            session.checkpoint()

        outcome = transfer.validate(c, reference_add(a, b))
        self.console.print(
            f"[green]Results match ({outcome.checked:,} elements)[/green]"
        )

        result = BenchmarkResult(
            name=config.kernel_name,
            device=selection.device_name,
            element_count=n,
            kernel_time=kernel_time,
            throughput=throughput,
            bandwidth=bandwidth,
            transfer_time=transfer_time,
            transfer_bandwidth=transfer_bandwidth,
            validated=outcome.matched,
            metadata={
                "platform": selection.platform_name,
                "device_class": selection.device_class.value,
                "fallback_used": selection.fallback_used,
                "global_size": global_size,
                "local_size": config.local_size,
                "kernel_trials": config.kernel_trials,
                "transfer_trials": config.transfer_trials,
                "build_log": build.log,
            },
        )
        self.metrics_collector.add_result(result)
        return result

    def list_devices(self) -> List[dict]:
        """Describe all OpenCL devices."""
        return self.device_info.list_all_devices()

    def get_results(self) -> List[BenchmarkResult]:
        """Get all collected results."""
        return self.metrics_collector.get_results()

    def clear_results(self) -> None:
        """Clear all collected results."""
        self.metrics_collector.clear_results()

    def print_results(self) -> None:
        """Print formatted results."""
        self.metrics_collector.print_results()
