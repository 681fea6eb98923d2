"""
Host-side input data and reference computation.
"""

from typing import Tuple

import numpy as np
import torch

ELEMENT_DTYPE = np.float32


def generate_inputs(element_count: int) -> Tuple[np.ndarray, np.ndarray]:
    """Two float32 arrays of uniform values in [0, 1).

    The generator is seeded with ``element_count`` so runs of the same
    size see the same data.
    """
    rng = np.random.default_rng(element_count)
    a = rng.random(element_count, dtype=ELEMENT_DTYPE)
    b = rng.random(element_count, dtype=ELEMENT_DTYPE)
    return a, b


def reference_add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """CPU reference for the a+b kernel, in float32 like the device."""
    return (torch.from_numpy(a) + torch.from_numpy(b)).numpy()
