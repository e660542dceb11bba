"""
Unit tests for the transaction classifier and disposition policy.

Tests cover:
- Extraction rules per transaction kind
- Disposition table defaults and overrides
- Coverage checks
"""

import pytest

from ingest.ol_ingest.chain.base import (
    BlockMetadataTransaction,
    GenesisTransaction,
    StateCheckpointTransaction,
    TransactionKind,
    UnknownTransaction,
    UserTransaction,
)
from ingest.ol_ingest.pipeline.classifier import (
    GENESIS_TIMESTAMP,
    Disposition,
    DispositionPolicy,
    classify,
)
from tests.conftest import make_event


class TestClassify:
    """Tests for classify()."""

    def test_genesis_uses_synthetic_timestamp(self):
        tx = GenesisTransaction(version=0, events=(make_event(), make_event(sequence_number=1)))

        result = classify(tx)

        assert result.kind == TransactionKind.GENESIS
        assert result.extract
        assert result.timestamp == GENESIS_TIMESTAMP == 0
        assert len(result.events) == 2

    def test_block_metadata_uses_own_timestamp(self):
        tx = BlockMetadataTransaction(version=5, timestamp=123456, events=(make_event(),))

        result = classify(tx)

        assert result.kind == TransactionKind.BLOCK_METADATA
        assert result.extract
        assert result.timestamp == 123456
        assert result.type_name == "block_metadata_transaction"

    def test_state_checkpoint_extracts_nothing(self):
        result = classify(StateCheckpointTransaction(version=42, timestamp=1))

        assert not result.extract
        assert result.events == ()
        assert result.version == 42

    def test_user_transaction_not_extracted(self):
        tx = UserTransaction(version=7, timestamp=1, sender="0x1", events=(make_event(),))

        result = classify(tx)

        assert result.kind == TransactionKind.USER
        assert not result.extract
        assert result.events == ()

    def test_unknown_keeps_node_type_name(self):
        result = classify(UnknownTransaction(version=8, type="validator_transaction"))

        assert result.kind == TransactionKind.UNKNOWN
        assert result.type_name == "validator_transaction"
        assert not result.extract


class TestDispositionPolicy:
    """Tests for DispositionPolicy."""

    def test_default_fails_every_kind(self):
        policy = DispositionPolicy()

        for kind in TransactionKind:
            assert policy.for_kind(kind) == Disposition.FAIL

    def test_from_names_overrides(self):
        policy = DispositionPolicy.from_names(
            {TransactionKind.GENESIS: "complete", TransactionKind.USER: "RETRY"}
        )

        assert policy.for_kind(TransactionKind.GENESIS) == Disposition.COMPLETE
        assert policy.for_kind(TransactionKind.USER) == Disposition.RETRY
        assert policy.for_kind(TransactionKind.BLOCK_METADATA) == Disposition.FAIL

    def test_from_names_rejects_unknown(self):
        with pytest.raises(ValueError, match="Invalid disposition"):
            DispositionPolicy.from_names({TransactionKind.GENESIS: "ignore"})

    def test_incomplete_table_rejected(self):
        with pytest.raises(ValueError, match="Disposition missing"):
            DispositionPolicy({TransactionKind.GENESIS: Disposition.COMPLETE})
