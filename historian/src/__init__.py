"""
Historian package for the property energy dashboard.

Collects live per-unit telemetry snapshots for each building, buffers them
into hourly and daily buckets, rolls completed periods up into statistical
summaries and archives them as JSON documents in a blob store. Also hosts
the pure metrics engine that derives building stats, unit statuses and
alerts from a snapshot.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-101)

TODO:
- None
"""
