"""
Command-line interface for the OpenCL a+b benchmark.
"""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config import (
    DEFAULT_DEVICE_PREFERENCE,
    DEFAULT_ELEMENT_COUNT,
    DEFAULT_KERNEL_NAME,
    DEFAULT_LOCAL_SIZE,
    DEFAULT_TRIALS,
    BenchmarkConfig,
)
from ..core.benchmark_runner import BenchmarkRunner
from ..core.device_info import DeviceInfo
from ..errors import BenchmarkError
from ..log import setup_logging

app = typer.Typer(
    help="OpenCL a+b benchmark - kernel throughput, VRAM bandwidth and validation"
)
console = Console()
err_console = Console(stderr=True)


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    size: int = typer.Option(
        DEFAULT_ELEMENT_COUNT,
        "--size",
        "-n",
        envvar="OPENCL_BENCH_SIZE",
        help="Elements per array",
    ),
    local_size: int = typer.Option(
        DEFAULT_LOCAL_SIZE,
        "--local-size",
        envvar="OPENCL_BENCH_LOCAL_SIZE",
        help="Work-group size",
    ),
    trials: int = typer.Option(
        DEFAULT_TRIALS,
        "--trials",
        envvar="OPENCL_BENCH_TRIALS",
        help="Timed kernel launches",
    ),
    transfer_trials: int = typer.Option(
        DEFAULT_TRIALS,
        "--transfer-trials",
        envvar="OPENCL_BENCH_TRANSFER_TRIALS",
        help="Timed result read-backs",
    ),
    device: str = typer.Option(
        DEFAULT_DEVICE_PREFERENCE,
        "--device",
        "-d",
        envvar="OPENCL_BENCH_DEVICE",
        help="Preferred GPU name substring",
    ),
    cpu_fallback: bool = typer.Option(
        True,
        "--cpu-fallback/--no-cpu-fallback",
        envvar="OPENCL_BENCH_CPU_FALLBACK",
        help="Use a CPU device when no GPU matches",
    ),
    kernel_path: Optional[Path] = typer.Option(
        None,
        "--kernel",
        envvar="OPENCL_BENCH_KERNEL",
        help="Kernel source file, relative to the working directory",
    ),
    kernel_name: str = typer.Option(
        DEFAULT_KERNEL_NAME,
        "--kernel-name",
        envvar="OPENCL_BENCH_KERNEL_NAME",
        help="Kernel entry point",
    ),
    build_options: List[str] = typer.Option(
        [], "--build-option", help="Extra OpenCL compiler option (repeatable)"
    ),
    profiling: bool = typer.Option(
        True,
        "--profiling/--no-profiling",
        envvar="OPENCL_BENCH_PROFILING",
        help="Record device-side times from event profiling",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Run the a+b benchmark once: select, build, dispatch, read back, validate."""
    setup_logging(verbose)
    if ctx.invoked_subcommand is not None:
        return

    try:
        config = BenchmarkConfig(
            element_count=size,
            local_size=local_size,
            kernel_trials=trials,
            transfer_trials=transfer_trials,
            device_preference=device,
            allow_cpu_fallback=cpu_fallback,
            kernel_name=kernel_name,
            build_options=tuple(build_options),
            profiling=profiling,
        )
        if kernel_path is not None:
            config.kernel_path = kernel_path

        runner = BenchmarkRunner(config, console=console)
        runner.run()
        runner.print_results()

    except BenchmarkError as e:
        err_console.print(f"[red]Error running benchmark: {e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def devices() -> None:
    """List all OpenCL platforms and devices."""
    try:
        device_list = DeviceInfo().list_all_devices()
    except BenchmarkError as e:
        err_console.print(f"[red]Error listing devices: {e}[/red]")
        raise typer.Exit(code=1)

    if not device_list:
        console.print("[yellow]No OpenCL devices found[/yellow]")
        return

    table = Table(title="OpenCL Devices")
    table.add_column("Platform", style="cyan")
    table.add_column("Device", style="green")
    table.add_column("Class", style="magenta")
    table.add_column("Compute units", justify="right")
    table.add_column("Max WG", justify="right")
    table.add_column("Memory (GB)", justify="right", style="yellow")

    for info in device_list:
        table.add_row(
            info["platform"],
            info["name"],
            info["class"],
            str(info["max_compute_units"]),
            str(info["max_work_group_size"]),
            f"{info['global_mem_size'] / 1024**3:.2f}",
        )

    console.print(table)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
