"""
ol-ingest - Ledger version ingestion into a columnar analytical store.

This package pulls transactions from a 0L/Aptos-style full node one version
at a time, extracts their events and bulk-loads them into ClickHouse:

Architecture:
    ┌─────────────┐   head version   ┌──────────────────┐
    │  Scheduler  │◀─────────────────│   Chain Client   │
    └──────┬──────┘                  └────────▲─────────┘
           │ version jobs (deduplicated by id)│ transaction
           ▼                                  │
    ┌─────────────┐                  ┌────────┴─────────┐
    │  Job Queue  │─────────────────▶│    Dispatcher    │
    └─────────────┘                  └────────┬─────────┘
                                              ▼
                      Classifier ──▶ Encoder ──▶ Loader ──▶ ClickHouse

Invariants:
    - A version job id is always "__version__{version}"
    - One job loads at most one transaction's worth of rows, atomically
    - Addresses reach the loader as exactly 64 upper-case hex characters
    - No exception escapes a worker; errors become job outcomes

How to change safely:
    - New transaction kinds need an entry in the classifier and disposition tables
    - Changes to the row layout must be mirrored in the store schema
    - Keep job ids stable, the queue relies on them for deduplication

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
