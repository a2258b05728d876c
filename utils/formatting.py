import re

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(size: int) -> str:
    """1536 -> '1.5 KB'"""
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.1f} {_UNITS[unit]}"


def estimate_tokens(text: str) -> int:
    return max(1, len(text) // 4)


def format_response_text(text: str) -> str:
    text = re.sub(r" {3,}", " ", text)
    text = text.replace("  ", " ")
    return text.strip()


_THINK_PATTERN = re.compile(r"<think>(.*?)</think>", re.DOTALL)


def split_thinking(text: str):
    """
    Separates `<think>...</think>` blocks from the visible answer.
    Returns (answer, thinking or None).
    """
    blocks = [b.strip() for b in _THINK_PATTERN.findall(text)]
    if not blocks:
        return text, None
    answer = _THINK_PATTERN.sub("", text)
    return answer, "\n\n".join(b for b in blocks if b) or None
