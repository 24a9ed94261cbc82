"""
Driving detection and live trip tracking.

- services/: detector state machine, progress persistence, sample channel
- api/: sample feed, trip control and settings routes
"""
