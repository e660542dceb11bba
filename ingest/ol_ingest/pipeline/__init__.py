"""
Ingestion pipeline: classifier, encoder, loader.

This module handles:
- Mapping transactions to extraction rules and job dispositions
- Encoding events into fixed-width, load-ready rows
- Loading one transaction's rows per atomic store insert
- Collecting events of many transactions into Parquet files

Invariants:
    - Encoding is pure; loading and Parquet output are the only side effects
    - A transaction's rows are loaded all at once or not at all
"""

from .classifier import Classification, Disposition, DispositionPolicy, classify
from .collection import EVENT_SCHEMA, EventCollection
from .encoder import EncodedRow, encode_events, pad_address, split_event_type
from .ingest import IngestPipeline, IngestResult
from .loader import EventLoader, LoadResult, serialize_rows

__all__ = [
    "Classification",
    "Disposition",
    "DispositionPolicy",
    "classify",
    "EventCollection",
    "EVENT_SCHEMA",
    "EncodedRow",
    "encode_events",
    "pad_address",
    "split_event_type",
    "EventLoader",
    "LoadResult",
    "serialize_rows",
    "IngestPipeline",
    "IngestResult",
]
