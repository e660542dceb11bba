"""
CLI tools for ingestion administration.

This module provides command-line tools for:
- init-schema: Create the event table
- enqueue: Queue version jobs for a range (backfill)
- counts: Show job counts per state
- ingest: Run one version through the pipeline inline

Invariants:
    - Tools use the same environment configuration as the service
    - Enqueueing is idempotent, existing job ids are skipped
"""

from .admin_cli import AdminCLI

__all__ = ["AdminCLI"]
