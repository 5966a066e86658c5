"""
Realtime propagation.

Responsibilities:
- Fan decision snapshots out to subscribed clients on a fixed interval.
- Keep idle connections open with periodic pings.
- Tear channels down as soon as their last subscriber leaves.
"""
