"""
Persistence layer.

Responsibilities:
- Define the document-store contract the decision engine depends on.
- Provide an in-memory implementation with atomic conditional writes.
- Seed demo restaurants, collections and groups for local runs.
"""
