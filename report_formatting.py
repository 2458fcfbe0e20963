import math
import re

# ============================================================
# PARSING (locale strings -> numbers)
# ============================================================

_LEADING_NUMBER = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


def _leading_float(text: str) -> float:
    """Parse the longest numeric prefix of `text`; 0.0 when there is none."""
    match = _LEADING_NUMBER.match(text)
    if not match:
        return 0.0
    value = float(match.group())
    if not math.isfinite(value):
        return 0.0
    return value


def parse_brl(value) -> float:
    """
    Parse a comma-decimal money string ("R$ 1.234,56", "-50,00", "33,3").

    Everything except digits, comma and minus is stripped, the first comma
    becomes the decimal point. Numbers pass through unchanged.
    Empty or unparseable input returns 0.0, never raises.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0

    clean = re.sub(r"[^\d,-]", "", str(value))
    clean = clean.replace(",", ".", 1)
    return _leading_float(clean)


def parse_rate(value) -> float:
    """
    Parse an annual rate given in percent points ("13,65", "13,65%", 13.65)
    and return it as a fraction (0.1365).
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) / 100.0 if math.isfinite(value) else 0.0

    clean = str(value).strip().rstrip("%")
    clean = re.sub(r"[^\d,.-]", "", clean).replace(",", ".", 1)
    return _leading_float(clean) / 100.0


# ============================================================
# DISPLAY FORMATTERS
# ============================================================

def _group_thousands(value: float, decimals: int) -> str:
    # 1234567.891 -> "1.234.567,89"
    text = f"{abs(value):,.{decimals}f}"
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"-{text}" if value < 0 else text


def fmt_brl(value) -> str:
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return "--"
    return f"R$ {_group_thousands(float(value), 2)}"


def fmt_pct(value, decimals: int = 2) -> str:
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return "--"
    return f"{value * 100:.{decimals}f}%".replace(".", ",")


def fmt_pp(value) -> str:
    """Weekly rate as percentage points per week."""
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return "--"
    return f"{value * 100:.3f} pp/sem".replace(".", ",")


def fmt_time_from_weeks(weeks) -> str:
    """52.0 -> "1a", 30.0 -> "7m", 130.0 -> "2a 6m"; "--" when undefined."""
    if weeks is None or not math.isfinite(weeks) or weeks <= 0:
        return "--"
    years = int(weeks // 52)
    months = int(math.floor((weeks % 52) / 4.33 + 0.5))
    if years == 0:
        return f"{months}m"
    if months == 0:
        return f"{years}a"
    return f"{years}a {months}m"


def trend_symbol(value) -> str:
    if value is None or value == 0:
        return "-"
    return "▲" if value > 0 else "▼"
