from __future__ import annotations

import math
import random
from typing import Callable

from ..models import ReplyPolicy


def calculate_delay_ms(policy: ReplyPolicy, rng: Callable[[], float] = random.random) -> int:
    """Human-like pause before replying, bounded to ``[min_delay_ms, max_delay_ms]``."""
    low = max(0, min(policy.min_delay_ms, policy.max_delay_ms))
    high = max(low, policy.max_delay_ms)
    return int(math.floor(low + rng() * (high - low)))
