"""Tests for the MongoDB document store with a mocked async client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from usage_guard.adapters.store.mongo import MongoDocumentStore
from usage_guard.core.errors import StoreUnavailableError, TransactionConflictError


@pytest.fixture
def collection() -> MagicMock:
    coll = MagicMock()
    coll.find_one = AsyncMock(return_value=None)
    coll.update_one = AsyncMock(return_value=Mock(matched_count=1))
    coll.insert_one = AsyncMock()
    return coll


@pytest.fixture
def client(collection: MagicMock) -> MagicMock:
    mongo_client = MagicMock()
    mongo_client.__getitem__.return_value.__getitem__.return_value = collection
    mongo_client.close = AsyncMock()
    return mongo_client


@pytest.fixture
def mongo_store(client: MagicMock) -> MongoDocumentStore:
    return MongoDocumentStore(client, database="usage_guard", timeout_ms=100, max_attempts=3)


@pytest.mark.asyncio
async def test_get_strips_bookkeeping_fields(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    collection.find_one.return_value = {"_id": "d", "_rev": 4, "count": 3}

    assert await mongo_store.get("usage_records", "d") == {"count": 3}
    collection.find_one.assert_awaited_once_with({"_id": "d"})


@pytest.mark.asyncio
async def test_increment_is_a_single_upsert(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    await mongo_store.increment(
        "usage_records", "d", {"count": 2}, set_fields={"t": 1}, on_insert={"identity": "u"}
    )

    collection.update_one.assert_awaited_once_with(
        {"_id": "d"},
        {
            "$inc": {"count": 2, "_rev": 1},
            "$set": {"t": 1},
            "$setOnInsert": {"identity": "u"},
        },
        upsert=True,
    )
    collection.find_one.assert_not_called()


@pytest.mark.asyncio
async def test_increment_retries_plain_update_after_upsert_race(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    collection.update_one.side_effect = [DuplicateKeyError("dup"), Mock(matched_count=1)]

    await mongo_store.increment("c", "d", {"n": 1})

    assert collection.update_one.await_count == 2
    assert "upsert" not in collection.update_one.await_args_list[1].kwargs


@pytest.mark.asyncio
async def test_ensure_uses_set_on_insert(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    await mongo_store.ensure("c", "d", {"count": 0})

    collection.update_one.assert_awaited_once_with(
        {"_id": "d"}, {"$setOnInsert": {"count": 0, "_rev": 1}}, upsert=True
    )


@pytest.mark.asyncio
async def test_driver_errors_become_store_unavailable(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    collection.find_one.side_effect = ServerSelectionTimeoutError("no servers")

    with pytest.raises(StoreUnavailableError) as exc_info:
        await mongo_store.get("c", "d")

    assert exc_info.value.code == "store_unavailable"


@pytest.mark.asyncio
async def test_slow_calls_time_out(mongo_store: MongoDocumentStore, collection: MagicMock) -> None:
    async def slow(*args, **kwargs):
        await asyncio.sleep(1)

    collection.find_one.side_effect = slow

    with pytest.raises(StoreUnavailableError):
        await mongo_store.get("c", "d")


@pytest.mark.asyncio
async def test_transaction_updates_with_revision_filter(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    collection.find_one.return_value = {"_id": "u", "_rev": 7, "n": 1}

    result = await mongo_store.transact("users", "u", lambda doc: ({"n": doc["n"] + 1}, "ok"))

    assert result == "ok"
    collection.update_one.assert_awaited_once_with(
        {"_id": "u", "_rev": 7}, {"$set": {"n": 2}, "$inc": {"_rev": 1}}
    )


@pytest.mark.asyncio
async def test_transaction_on_document_without_revision(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    collection.find_one.return_value = {"_id": "u", "plan": "Pro"}

    await mongo_store.transact("users", "u", lambda doc: ({"n": 1}, None))

    assert collection.update_one.await_args.args[0] == {"_id": "u", "_rev": {"$exists": False}}


@pytest.mark.asyncio
async def test_transaction_inserts_missing_document(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    await mongo_store.transact("c", "d", lambda doc: ({"n": 1}, None))

    collection.insert_one.assert_awaited_once_with({"_id": "d", "_rev": 1, "n": 1})


@pytest.mark.asyncio
@patch("usage_guard.adapters.store.mongo.random.uniform", return_value=0.0)
async def test_transaction_retries_on_conflict_then_gives_up(
    mock_uniform: Mock, mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    collection.find_one.return_value = {"_id": "u", "_rev": 1, "n": 0}
    collection.update_one.return_value = Mock(matched_count=0)

    with pytest.raises(TransactionConflictError):
        await mongo_store.transact("users", "u", lambda doc: ({"n": 1}, None))

    assert collection.find_one.await_count == 3
    assert mock_uniform.call_count == 3


@pytest.mark.asyncio
async def test_concurrent_transactions_queue_within_the_process(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    stored = {"_id": "u", "_rev": 1, "n": 0}

    async def find_one(query):
        await asyncio.sleep(0)
        return dict(stored)

    async def update_one(query, update):
        await asyncio.sleep(0)
        if query["_rev"] != stored["_rev"]:
            return Mock(matched_count=0)
        stored.update(update["$set"])
        stored["_rev"] += 1
        return Mock(matched_count=1)

    collection.find_one.side_effect = find_one
    collection.update_one.side_effect = update_one

    await asyncio.gather(
        *(mongo_store.transact("users", "u", lambda doc: ({"n": doc["n"] + 1}, None)) for _ in range(10))
    )

    assert stored["n"] == 10
    assert collection.find_one.await_count == 10


@pytest.mark.asyncio
async def test_transaction_without_updates_skips_commit(
    mongo_store: MongoDocumentStore, collection: MagicMock
) -> None:
    collection.find_one.return_value = {"_id": "u", "_rev": 1}

    assert await mongo_store.transact("users", "u", lambda doc: (None, "read-only")) == "read-only"
    collection.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_aclose_closes_client(mongo_store: MongoDocumentStore, client: MagicMock) -> None:
    await mongo_store.aclose()

    client.close.assert_awaited_once()
