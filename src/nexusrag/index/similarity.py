from __future__ import annotations

from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    Returns 0.0 instead of raising when either vector is missing or empty,
    the lengths differ, or a magnitude is zero; such chunks simply never
    pass the retrieval threshold.
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    mag_a = float(np.linalg.norm(va))
    mag_b = float(np.linalg.norm(vb))
    if mag_a == 0.0 or mag_b == 0.0:
        return 0.0

    sim = float(np.dot(va, vb) / (mag_a * mag_b))
    # Float error can push parallel vectors a hair past 1.
    return max(-1.0, min(1.0, sim))
