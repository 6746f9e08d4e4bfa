"""Tests for the embedding backfill pipeline."""

from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest

from indexer.errors import EmbeddingServiceError, StoreError
from pipelines.backfill import backfill_embeddings


def batch_client():
    client = Mock()
    client.embed_batch = AsyncMock(side_effect=lambda texts: [np.ones(3, dtype=np.float32) for _ in texts])
    client.model_name = "test-model"
    return client


@pytest.fixture
async def unembedded_store(store, make_record):
    for rid in ["N330001", "N330002", "N330003"]:
        await store.upsert(make_record(rid, description=f"product {rid}"))
    await store.upsert(make_record("N330004", embedding=[0.0, 1.0, 0.0]))
    return store


@pytest.mark.asyncio
async def test_fills_missing_vectors(unembedded_store):
    client = batch_client()
    stats = await backfill_embeddings(unembedded_store, client, batch_size=2)

    assert stats.embedded == 3
    assert stats.failed == 0
    assert client.embed_batch.await_count == 2
    assert await unembedded_store.list_missing_embeddings() == []

    record = await unembedded_store.get_by_id("N330001")
    assert record.embedding_model == "test-model"
    assert client.embed_batch.await_args_list[0].args[0][0] == "Product: product N330001"


@pytest.mark.asyncio
async def test_max_records(unembedded_store):
    stats = await backfill_embeddings(unembedded_store, batch_client(), batch_size=2, max_records=1)

    assert stats.embedded == 1
    assert [r.id for r in await unembedded_store.list_missing_embeddings()] == ["N330002", "N330003"]


@pytest.mark.asyncio
async def test_failed_batches_skipped(unembedded_store):
    client = Mock()
    client.embed_batch = AsyncMock(side_effect=EmbeddingServiceError("quota exceeded"))
    client.model_name = "test-model"

    stats = await backfill_embeddings(unembedded_store, client, batch_size=2)

    assert stats.embedded == 0
    assert stats.failed == 3
    assert stats.failed_batches == 2
    assert len(await unembedded_store.list_missing_embeddings()) == 3


@pytest.mark.asyncio
async def test_nothing_to_do(store):
    client = batch_client()
    stats = await backfill_embeddings(store, client)
    assert stats.scanned == 0
    client.embed_batch.assert_not_called()


@pytest.mark.asyncio
async def test_invalid_batch_size(store):
    with pytest.raises(ValueError):
        await backfill_embeddings(store, batch_client(), batch_size=0)


@pytest.mark.asyncio
async def test_partial_batch_counts_written_rulings(unembedded_store):
    original = unembedded_store.update_embedding
    calls = []

    async def flaky_update(ruling_id, embedding, model):
        calls.append(ruling_id)
        if len(calls) == 2:
            raise StoreError("disk full")
        await original(ruling_id, embedding, model)

    unembedded_store.update_embedding = flaky_update
    stats = await backfill_embeddings(unembedded_store, batch_client(), batch_size=3)

    assert stats.embedded == 1
    assert stats.failed == 2
    assert stats.failed_batches == 1
    assert [r.id for r in await unembedded_store.list_missing_embeddings()] == ["N330002", "N330003"]
