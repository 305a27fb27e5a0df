"""Metrics input boundary.

- snapshot.py: MetricsSnapshot / ChannelMetric and their serialized form
- channels.py: channel key canonicalization
- kpi.py: zero-safe ratio helpers
- reader.py: cached snapshot access with refresh-on-stale
"""
