"""
Notification hand-off.

Responsibilities:
- Define the dispatcher contract for "started" and "completed" events.
- Provide an outbox dispatcher that records requests for real senders.
"""
