"""Aggregation and sessionization stages."""

from timeq.pipeline.aggregator import AggregationResult, EventAggregator, merge_events
from timeq.pipeline.sessionizer import Sessionizer, WorkSession

__all__ = ["AggregationResult", "EventAggregator", "Sessionizer", "WorkSession", "merge_events"]
