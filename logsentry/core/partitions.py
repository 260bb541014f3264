"""Partition-usage alerting."""

from logsentry.config.settings import Thresholds
from logsentry.core.models import PartitionSample


def evaluate(samples, thresholds: Thresholds) -> list[PartitionSample]:
    """Return the samples strictly above the usage threshold, in probe order."""
    return [s for s in samples if s.used_pct > thresholds.partition_usage_pct]


def format_partitions(partitions: list[PartitionSample]) -> str:
    return "\n".join(f"{p.target} - {p.used_pct:g}%" for p in partitions)
