"""
Durable background jobs.

This package provides the job system:
- Key-value backed queue with ready and scheduled indexes
- Registry-based pluggable handlers
- Compare-and-commit claiming safe across processes
- Exponential-backoff retries with a dead-letter state
"""
