"""
workers — periodic background jobs.

Sub-modules:
    base               — PeriodicWorker state machine and overlap guard
    backoff            — fixed / exponential retry delays
    integration_retry  — dead-letter webhook re-processing
    sensor_retention   — hot / warm / cold sensor reading sweep
"""
