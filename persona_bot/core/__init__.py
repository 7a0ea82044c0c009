from .decision import decide
from .delay import calculate_delay_ms
from .prompt import build_prompt, strip_mentions

__all__ = ["build_prompt", "calculate_delay_ms", "decide", "strip_mentions"]
