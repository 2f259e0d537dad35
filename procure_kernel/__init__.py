"""
Procure Kernel - approval workflow core

Shared foundation for the SOW, purchase order and invoice workflows:
- Typed, discriminated error hierarchy
- Structured JSON logging with request-scoped context
- Append-only audit log with query, summary and statistics
- Idempotent transition requests via a processed-request ledger
- Optimistic concurrency on every workflow entity
"""

__version__ = "0.1.0"
