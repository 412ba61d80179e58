"""Rotating usage buckets fed by every catalog operation."""

from instruction_spine.usage.buckets import UsageAggregator, UsageBucket, UsageBucketContainer, UsageEvent

__all__ = ["UsageAggregator", "UsageBucket", "UsageBucketContainer", "UsageEvent"]
