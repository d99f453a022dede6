"""
Scheduled job runner.

- registry: static job definitions and their handlers
- engine: fires due jobs, records executions, escalates persistent failures
- dead_letter: jobs that exhausted their retry budget
- service: tick loop (APScheduler) and leadership lock wiring
"""
