"""
Tests for device enumeration and selection.
"""

from unittest.mock import patch

import pynvml
import pyopencl as cl
import pytest

from conftest import FakeClError, FakeDevice, FakePlatform, opencl_available
from opencl_bench.core.device_info import (
    DeviceClass,
    DeviceInfo,
    choose_device,
    device_type_name,
    list_devices,
    list_platforms,
    select_device,
)
from opencl_bench.errors import DriverError, NoDeviceAvailableError


class TestEnumeration:
    """Tests for platform and device listing."""

    def test_list_platforms(self, gpu_platforms):
        """Test that platforms come back in driver order."""
        with patch.object(cl, "get_platforms", return_value=gpu_platforms):
            assert list_platforms() == gpu_platforms

    def test_no_platforms_is_empty(self):
        """PLATFORM_NOT_FOUND_KHR means nothing installed, not failure."""
        with patch.object(cl, "get_platforms", side_effect=FakeClError(-1001)):
            assert list_platforms() == []

    def test_platform_enumeration_failure(self):
        """Test that other enumeration failures carry code and call site."""
        with patch.object(cl, "get_platforms", side_effect=FakeClError(-6)):
            with pytest.raises(DriverError) as exc_info:
                list_platforms()

        assert exc_info.value.code == -6
        assert exc_info.value.operation == "clGetPlatformIDs"
        assert "core/device_info.py" in exc_info.value.location

    def test_list_devices_by_class(self, gpu_platforms):
        """Test that devices are filtered by class."""
        intel = gpu_platforms[0]
        gpus = list_devices(intel, DeviceClass.GPU)
        cpus = list_devices(intel, DeviceClass.CPU)

        assert [d.name for d in gpus] == ["Intel(R) UHD Graphics 630"]
        assert [d.name for d in cpus] == ["Intel(R) Core(TM) i7"]

    def test_list_devices_empty(self, cpu_only_platforms):
        """DEVICE_NOT_FOUND yields an empty list."""
        assert list_devices(cpu_only_platforms[0], DeviceClass.GPU) == []

    def test_list_devices_failure(self):
        """Test that other device query failures propagate."""
        platform = FakePlatform("Broken", [])
        with patch.object(platform, "get_devices", side_effect=FakeClError(-30)):
            with pytest.raises(DriverError) as exc_info:
                list_devices(platform, DeviceClass.GPU)
        assert exc_info.value.code == -30


class TestSelectDevice:
    """Tests for the name-substring selection policy."""

    def test_case_insensitive_match(self, gpu_platforms):
        """Test case-insensitive substring matching."""
        device = select_device(gpu_platforms, "nvidia")
        assert device.name == "NVIDIA GeForce RTX 3080"

    def test_first_match_in_enumeration_order(self, gpu_platforms):
        """Empty preference matches the first GPU of the first platform."""
        device = select_device(gpu_platforms, "")
        assert device.name == "Intel(R) UHD Graphics 630"

    def test_no_match_returns_none(self, gpu_platforms):
        """Test that no match gives None rather than an error."""
        assert select_device(gpu_platforms, "radeon") is None

    def test_never_returns_wrong_class(self, cpu_only_platforms):
        """A CPU whose name contains the preference is not a GPU match."""
        assert select_device(cpu_only_platforms, "amd") is None
        assert select_device(cpu_only_platforms, "nvidia") is None

    def test_cpu_class(self, gpu_platforms):
        """Test selection within the CPU class."""
        device = select_device(gpu_platforms, "core", DeviceClass.CPU)
        assert device.type == cl.device_type.CPU


class TestChooseDevice:
    """Tests for the total selection with CPU fallback."""

    def test_prefers_gpu(self, gpu_platforms):
        """Test that a matching GPU wins without fallback."""
        selection = choose_device(gpu_platforms, "NVIDIA")

        assert selection.device_name == "NVIDIA GeForce RTX 3080"
        assert selection.platform_name == "NVIDIA CUDA"
        assert selection.device_class is DeviceClass.GPU
        assert not selection.fallback_used

    def test_falls_back_to_cpu(self, cpu_only_platforms):
        """Test the CPU fallback when no GPU matches."""
        selection = choose_device(cpu_only_platforms, "nvidia")

        assert selection.fallback_used
        assert selection.device_class is DeviceClass.CPU
        assert selection.device.type == cl.device_type.CPU

    def test_fallback_prefers_matching_cpu(self):
        """Test that the fallback still honours the name preference."""
        platforms = [
            FakePlatform(
                "CPUs",
                [
                    FakeDevice("Intel Xeon", cl.device_type.CPU),
                    FakeDevice("AMD EPYC", cl.device_type.CPU),
                ],
            )
        ]
        selection = choose_device(platforms, "amd")
        assert selection.device_name == "AMD EPYC"

    def test_fallback_disabled(self, cpu_only_platforms):
        """Test that a disabled fallback turns a miss into an error."""
        with pytest.raises(NoDeviceAvailableError, match="fallback is disabled"):
            choose_device(cpu_only_platforms, "nvidia", allow_cpu_fallback=False)

    def test_no_devices_at_all(self):
        """Test the error when nothing is installed."""
        with pytest.raises(NoDeviceAvailableError):
            choose_device([], "nvidia")


class TestDeviceTypeName:
    """Tests for device type naming."""

    def test_single_class(self):
        """Test plain GPU and CPU types."""
        assert device_type_name(cl.device_type.GPU) == "GPU"
        assert device_type_name(cl.device_type.CPU) == "CPU"

    def test_default_bit_ignored(self):
        """Drivers may report the DEFAULT bit along with the class."""
        assert device_type_name(cl.device_type.DEFAULT | cl.device_type.CPU) == "CPU"

    def test_unknown(self):
        """Test a type with no class bit."""
        assert device_type_name(cl.device_type.DEFAULT) == "UNKNOWN"


class TestDeviceInfo:
    """Tests for DeviceInfo class."""

    @pytest.fixture
    def device_info(self):
        with patch.object(
            pynvml,
            "nvmlInit",
            side_effect=pynvml.NVMLError(pynvml.NVML_ERROR_LIBRARY_NOT_FOUND),
        ):
            return DeviceInfo()

    def test_nvml_unavailable(self, device_info):
        """Test NVML availability detection."""
        assert device_info.nvml_available is False

    def test_get_device_info(self, device_info):
        """Test device information retrieval."""
        info = device_info.get_device_info(FakeDevice("  Fake GPU  "))

        assert info["name"] == "Fake GPU"
        assert info["type"] == "GPU"
        assert info["max_work_group_size"] == 1024
        assert info["global_mem_size"] > 0
        assert "temperature" not in info

    def test_device_with_default_bit(self, device_info):
        """Test the reported type of a device that is also the default."""
        device = FakeDevice("cpu0", cl.device_type.CPU | cl.device_type.DEFAULT)
        assert device_info.get_device_info(device)["type"] == "CPU"

    def test_list_all_devices(self, device_info, gpu_platforms):
        """Test listing every device with its platform and class."""
        with patch.object(cl, "get_platforms", return_value=gpu_platforms):
            devices = device_info.list_all_devices()

        assert len(devices) == 3
        assert {d["class"] for d in devices} == {"gpu", "cpu"}
        assert devices[0]["platform"] == "Intel(R) OpenCL"

    def test_nvml_enrichment(self):
        """NVIDIA devices get NVML telemetry when available."""
        memory = type("Memory", (), {"total": 10, "free": 4, "used": 6})()
        with patch.object(pynvml, "nvmlInit"), patch.object(
            pynvml, "nvmlDeviceGetCount", return_value=1
        ), patch.object(
            pynvml, "nvmlDeviceGetHandleByIndex", return_value="handle"
        ), patch.object(
            pynvml, "nvmlDeviceGetName", return_value="NVIDIA GeForce RTX 3080"
        ), patch.object(
            pynvml, "nvmlSystemGetDriverVersion", return_value="550.54"
        ), patch.object(
            pynvml, "nvmlDeviceGetMemoryInfo", return_value=memory
        ), patch.object(
            pynvml, "nvmlDeviceGetTemperature", return_value=55
        ):
            info = DeviceInfo().get_device_info(
                FakeDevice("NVIDIA GeForce RTX 3080", vendor="NVIDIA Corporation")
            )

        assert info["nvml_driver_version"] == "550.54"
        assert info["memory_used"] == 6
        assert info["temperature"] == 55

    @pytest.mark.opencl
    @pytest.mark.skipif(not opencl_available(), reason="OpenCL not available")
    def test_real_device_type(self, device_info):
        """Test the type name of a real selected device."""
        selection = choose_device(list_platforms(), "")
        info = device_info.get_device_info(selection.device)
        assert info["type"] == selection.device_class.name
