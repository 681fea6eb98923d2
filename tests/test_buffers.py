"""
Tests for device buffer allocation.
"""

from unittest.mock import Mock, patch

import numpy as np
import pyopencl as cl
import pytest

from conftest import FakeClError
from opencl_bench.core.buffers import AccessIntent, DeviceBuffer, allocate
from opencl_bench.errors import AllocationError


class TestAllocate:
    """Tests for allocate()."""

    @pytest.mark.parametrize("size", [0, -4])
    def test_invalid_size(self, session, size):
        """Test that a non-positive size makes no driver call."""
        with patch.object(cl, "Buffer") as buffer_cls:
            with pytest.raises(AllocationError) as exc_info:
                allocate(session, size, AccessIntent.WRITE_ONLY)

        buffer_cls.assert_not_called()
        assert exc_info.value.code == -61

    def test_uninitialised_buffer(self, session):
        """Test a buffer allocated without host data."""
        with patch.object(cl, "Buffer") as buffer_cls:
            buffer = allocate(session, 400, AccessIntent.WRITE_ONLY)

        buffer_cls.assert_called_once_with(
            session.context, cl.mem_flags.WRITE_ONLY, size=400
        )
        assert buffer.size_bytes == 400
        assert buffer.access is AccessIntent.WRITE_ONLY
        assert not buffer.released

    def test_copy_from_host(self, session):
        """Host data is copied as part of the allocation."""
        data = np.arange(100, dtype=np.float32)
        with patch.object(cl, "Buffer") as buffer_cls:
            allocate(session, data.nbytes, AccessIntent.READ_ONLY, data)

        flags = buffer_cls.call_args.args[1]
        assert flags & cl.mem_flags.COPY_HOST_PTR
        assert flags & cl.mem_flags.READ_ONLY
        np.testing.assert_array_equal(buffer_cls.call_args.kwargs["hostbuf"], data)

    def test_host_size_mismatch(self, session):
        """Test host data whose size differs from the buffer."""
        data = np.zeros(10, dtype=np.float32)
        with pytest.raises(AllocationError, match="40 bytes"):
            allocate(session, 80, AccessIntent.READ_ONLY, data)

    def test_out_of_device_memory(self, session):
        """Test a driver allocation failure."""
        with patch.object(cl, "Buffer", side_effect=FakeClError(-4)):
            with pytest.raises(AllocationError) as exc_info:
                allocate(session, 1024, AccessIntent.WRITE_ONLY)

        assert exc_info.value.code == -4
        assert exc_info.value.operation == "clCreateBuffer"

    def test_released_with_session(self, session):
        """Test that the session releases its buffers."""
        with patch.object(cl, "Buffer") as buffer_cls:
            buffer = allocate(session, 64, AccessIntent.WRITE_ONLY)
        session.release()

        buffer_cls.return_value.release.assert_called_once()
        assert buffer.released


class TestDeviceBuffer:
    """Tests for DeviceBuffer."""

    def test_release_once(self):
        """Test that a second release is a no-op."""
        handle = Mock()
        buffer = DeviceBuffer(handle, 16, AccessIntent.READ_ONLY)
        buffer.release()
        buffer.release()

        handle.release.assert_called_once()
        assert buffer.released

    def test_mem_flags(self):
        """Test the access intent to mem flags mapping."""
        assert AccessIntent.READ_ONLY.mem_flags == cl.mem_flags.READ_ONLY
        assert AccessIntent.WRITE_ONLY.mem_flags == cl.mem_flags.WRITE_ONLY
