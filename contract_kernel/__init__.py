"""
Contract Kernel - lifecycle core for negotiated contracts.

A transactional, append-only contract lifecycle system with:
- An explicit status transition table
- Parallel LEGAL / FINANCE approval tracks with head-level escalation
- An immutable, gap-free version ledger with block-level changelogs
- A per-contract hash-chained audit trail
"""

__version__ = "0.1.0"
