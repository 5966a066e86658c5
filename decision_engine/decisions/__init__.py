"""
Decision engine core.

Responsibilities:
- Compute recency weights from completed decision history.
- Draw weighted-random winners for random decisions.
- Aggregate ranked ballots with instant-runoff for tiered decisions.
- Own the decision lifecycle: creation, voting, at-most-once resolution,
  expiry, history edits and weight resets.
"""
