"""Type aliases used throughout the package.

Images handed to the registration strategies are float arrays in which NaN marks samples
that fall outside every contributing view.
"""
from typing import Any

import numpy as np
import numpy.typing as npt

# Array type aliases
NumArray = npt.NDArray[Any]
FloatArray = npt.NDArray[np.float64]
IntArray = npt.NDArray[np.int64]
