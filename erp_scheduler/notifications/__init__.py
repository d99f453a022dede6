"""
Notification delivery queue.

- payload: validated enqueue request
- delivery: email (SMTP) and Slack channels
- queue: persistent queue with drain worker, backoff and recovery
- dead_letter: operator view and retry of exhausted notifications
"""
