"""Identity layer for hooklink.

This package resolves inbound webhook payloads to the user and agent that
should handle them:
- Identifier canonicalization and keyed hashing
- Payload path extraction
- Definition matching and validation
- Link activation
- Resolution
"""
