"""Growth-threshold alerting: relative + absolute change, big-directory gate."""

from logsentry.config.settings import Thresholds
from logsentry.core.models import GrowthResult


def evaluate(previous_bytes: int, current_bytes: int,
             thresholds: Thresholds) -> GrowthResult:
    """Decide whether the change between two size samples warrants an alert.

    The relative rule only applies once the baseline is at least
    ``big_dir_bytes``; small directories double in size harmlessly. The
    absolute rule applies regardless of baseline, so large growth from a
    small or zero baseline is still caught. Shrinkage never alerts.
    """
    diff_bytes = current_bytes - previous_bytes

    percent_change = None
    if previous_bytes > 0:
        percent_change = diff_bytes / previous_bytes * 100

    relative = (percent_change is not None
                and percent_change > thresholds.min_relative_change_pct
                and previous_bytes >= thresholds.big_dir_bytes)
    absolute = diff_bytes >= thresholds.min_absolute_diff_bytes

    return GrowthResult(
        alert=relative or absolute,
        percent_change=percent_change,
        diff_bytes=diff_bytes,
    )


def format_percent(result: GrowthResult) -> str:
    if result.percent_change is None:
        return "N/A"
    return f"{result.percent_change:.2f}"


def format_size(size_bytes: int | float) -> str:
    """Format bytes into an IEC human-readable string (signed)."""
    sign = "-" if size_bytes < 0 else ""
    value = float(abs(size_bytes))
    for unit in ('B', 'K', 'M', 'G', 'T'):
        if value < 1024:
            if unit == 'B':
                return f"{sign}{int(value)}"
            return f"{sign}{value:.1f}{unit}"
        value /= 1024
    return f"{sign}{value:.1f}P"
