"""
Device discovery and selection for OpenCL benchmarking.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import pynvml
import pyopencl as cl

from ..errors import DriverError, NoDeviceAvailableError, driver_call

logger = logging.getLogger(__name__)

# OpenCL status codes meaning "nothing to enumerate" rather than failure.
_NO_PLATFORMS_CODES = (-1001,)  # CL_PLATFORM_NOT_FOUND_KHR
_NO_DEVICES_CODES = (-1,)  # CL_DEVICE_NOT_FOUND


class DeviceClass(Enum):
    """Device classes the benchmark can run on."""

    GPU = "gpu"
    CPU = "cpu"

    @property
    def cl_type(self) -> int:
        return cl.device_type.GPU if self is DeviceClass.GPU else cl.device_type.CPU


_TYPE_NAMES = (
    ("GPU", cl.device_type.GPU),
    ("CPU", cl.device_type.CPU),
    ("ACCELERATOR", cl.device_type.ACCELERATOR),
    ("CUSTOM", cl.device_type.CUSTOM),
)


def device_type_name(device_type: int) -> str:
    """Readable name of a device type bitfield, ignoring the DEFAULT bit."""
    names = [name for name, bit in _TYPE_NAMES if device_type & bit]
    return " | ".join(names) or "UNKNOWN"


@dataclass(frozen=True)
class DeviceSelection:
    """Result of the device selection policy."""

    device: Any
    platform_name: str
    device_class: DeviceClass
    fallback_used: bool = False

    @property
    def device_name(self) -> str:
        return self.device.name.strip()


def list_platforms() -> List[Any]:
    """Enumerate OpenCL platforms.

    Returns:
        Platforms in driver enumeration order, empty if none are installed

    Raises:
        DriverError: if the enumeration call itself fails
    """
    try:
        with driver_call("clGetPlatformIDs"):
            return list(cl.get_platforms())
    except DriverError as e:
        if e.code in _NO_PLATFORMS_CODES:
            logger.debug("No OpenCL platforms installed")
            return []
        raise


def list_devices(platform, device_class: DeviceClass) -> List[Any]:
    """Enumerate devices of one class on a platform.

    Args:
        platform: OpenCL platform
        device_class: Class of devices to list

    Returns:
        Devices in enumeration order, possibly empty

    Raises:
        DriverError: if the enumeration call itself fails
    """
    try:
        with driver_call("clGetDeviceIDs"):
            return list(platform.get_devices(device_type=device_class.cl_type))
    except DriverError as e:
        if e.code in _NO_DEVICES_CODES:
            return []
        raise


def _platform_name(platform) -> str:
    with driver_call("clGetPlatformInfo"):
        return platform.name.strip()


def _device_name(device) -> str:
    with driver_call("clGetDeviceInfo"):
        return device.name.strip()


def _find_device(
    platforms: Sequence[Any], preferred_name: Optional[str], device_class: DeviceClass
) -> Optional[DeviceSelection]:
    needle = (preferred_name or "").lower()
    for platform in platforms:
        for device in list_devices(platform, device_class):
            if needle in _device_name(device).lower():
                return DeviceSelection(
                    device=device,
                    platform_name=_platform_name(platform),
                    device_class=device_class,
                )
    return None


def select_device(
    platforms: Sequence[Any],
    preferred_name: str,
    device_class: DeviceClass = DeviceClass.GPU,
) -> Optional[Any]:
    """Pick the first device of ``device_class`` whose name contains ``preferred_name``.

    Matching is case-insensitive. Platforms are visited in enumeration
    order and, within a platform, devices in enumeration order.

    Returns:
        The matching device, or None if no platform yields a match
    """
    selection = _find_device(platforms, preferred_name, device_class)
    return selection.device if selection else None


def choose_device(
    platforms: Sequence[Any],
    preferred_name: str,
    allow_cpu_fallback: bool = True,
) -> DeviceSelection:
    """Total device selection: preferred GPU, else an explicit CPU fallback.

    Args:
        platforms: Platforms to search
        preferred_name: Case-insensitive device name substring
        allow_cpu_fallback: Fall back to the CPU class when no GPU matches

    Returns:
        DeviceSelection with ``fallback_used`` set when the CPU class was used

    Raises:
        NoDeviceAvailableError: if nothing can be selected
    """
    selection = _find_device(platforms, preferred_name, DeviceClass.GPU)
    if selection is not None:
        return selection

    if not allow_cpu_fallback:
        raise NoDeviceAvailableError(
            f"No GPU device matching '{preferred_name}' and CPU fallback is disabled"
        )

    logger.warning(
        "No GPU device matching '%s', falling back to CPU devices", preferred_name
    )
    selection = _find_device(platforms, preferred_name, DeviceClass.CPU)
    if selection is None:
        selection = _find_device(platforms, "", DeviceClass.CPU)
    if selection is None:
        raise NoDeviceAvailableError(
            f"No GPU device matching '{preferred_name}' and no CPU device available"
        )

    return DeviceSelection(
        device=selection.device,
        platform_name=selection.platform_name,
        device_class=DeviceClass.CPU,
        fallback_used=True,
    )


class DeviceInfo:
    """Collect and provide OpenCL device information."""

    def __init__(self):
        """Initialize device info collector."""
        self._nvml_available = False
        try:
            pynvml.nvmlInit()
            self._nvml_available = True
        except pynvml.NVMLError as e:
            logger.debug("NVML unavailable: %s", e)

    @property
    def nvml_available(self) -> bool:
        """Check if NVML telemetry can be queried."""
        return self._nvml_available

    def get_device_info(self, device) -> Dict[str, Any]:
        """Get comprehensive device information.

        Args:
            device: OpenCL device

        Returns:
            Dictionary containing device information
        """
        with driver_call("clGetDeviceInfo"):
            info = {
                "name": device.name.strip(),
                "vendor": device.vendor.strip(),
                "version": device.version.strip(),
                "driver_version": device.driver_version.strip(),
                "type": device_type_name(device.type),
                "max_compute_units": device.max_compute_units,
                "max_work_group_size": device.max_work_group_size,
                "global_mem_size": device.global_mem_size,
                "max_mem_alloc_size": device.max_mem_alloc_size,
            }

        if self._nvml_available and "nvidia" in info["vendor"].lower():
            info.update(self._get_nvml_info(info["name"]))

        return info

    def _get_nvml_info(self, device_name: str) -> Dict[str, Any]:
        """NVML telemetry for the NVIDIA GPU whose name matches ``device_name``."""
        info: Dict[str, Any] = {}
        try:
            handle = None
            for index in range(pynvml.nvmlDeviceGetCount()):
                candidate = pynvml.nvmlDeviceGetHandleByIndex(index)
                name = pynvml.nvmlDeviceGetName(candidate)
                if isinstance(name, bytes):
                    name = name.decode()
                if name.strip() == device_name:
                    handle = candidate
                    break
            if handle is None:
                return info

            nvml_driver = pynvml.nvmlSystemGetDriverVersion()
            info["nvml_driver_version"] = (
                nvml_driver.decode() if isinstance(nvml_driver, bytes) else nvml_driver
            )
        except pynvml.NVMLError:
            return info

        # memory info
        try:
            memory_info = pynvml.nvmlDeviceGetMemoryInfo(handle)
            info.update(
                {
                    "memory_total": memory_info.total,
                    "memory_free": memory_info.free,
                    "memory_used": memory_info.used,
                }
            )
        except pynvml.NVMLError:
            pass

        # temperature
        try:
            info["temperature"] = pynvml.nvmlDeviceGetTemperature(
                handle, pynvml.NVML_TEMPERATURE_GPU
            )
        except pynvml.NVMLError:
            pass

        return info

    def list_all_devices(self) -> List[Dict[str, Any]]:
        """Describe every device on every platform.

        Returns:
            One dictionary per device, with ``platform`` and ``class`` keys added
        """
        devices = []
        for platform in list_platforms():
            platform_name = _platform_name(platform)
            for device_class in DeviceClass:
                for device in list_devices(platform, device_class):
                    info = self.get_device_info(device)
                    info["platform"] = platform_name
                    info["class"] = device_class.value
                    devices.append(info)
        return devices

    def print_device_info(self, selection: DeviceSelection, console) -> None:
        """Print formatted information about the selected device.

        Args:
            selection: Selected device
            console: rich console to print to
        """
        info = self.get_device_info(selection.device)

        console.rule("OpenCL Device")
        console.print(f"Platform: {selection.platform_name}")
        console.print(f"Device: {info['name']} ({info['type']})")
        if selection.fallback_used:
            console.print("[yellow]No matching GPU found, using CPU fallback[/yellow]")
        console.print(f"Vendor: {info['vendor']}")
        console.print(f"OpenCL: {info['version']} (driver {info['driver_version']})")
        console.print(f"Compute units: {info['max_compute_units']}")
        console.print(f"Max work-group size: {info['max_work_group_size']}")
        console.print(f"Global memory: {info['global_mem_size'] / 1024**3:.2f} GB")

        if "memory_used" in info:
            console.print(f"Memory in use: {info['memory_used'] / 1024**3:.2f} GB")
        if "temperature" in info:
            console.print(f"Temperature: {info['temperature']}°C")
        if "nvml_driver_version" in info:
            console.print(f"NVIDIA Driver: {info['nvml_driver_version']}")
