from __future__ import annotations

MM_PER_INCH = 25.4
PT_PER_INCH = 72.0
PT_PER_MM = PT_PER_INCH / MM_PER_INCH

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def mm_to_pt(value_mm: float) -> float:
    return value_mm * PT_PER_MM


def pt_to_mm(value_pt: float) -> float:
    return value_pt / PT_PER_MM


def format_bytes(size: float, decimals: int = 2) -> str:
    """Human readable size, 1024-based: "0 Bytes", "1.5 KB", "2 MB"."""
    if size <= 0:
        return "0 Bytes"
    decimals = max(decimals, 0)
    exponent = 0
    value = float(size)
    while value >= 1024 and exponent < len(SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1
    value = round(value, decimals)
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".") if decimals else f"{value:.0f}"
    return f"{text} {SIZE_UNITS[exponent]}"


def estimate_size(original_size: int, factor: float) -> float:
    """Rough output size for a quality factor. An estimate, not a bound."""
    return original_size * factor
