import json

import pytest
from scrobbler.services.models import ArtistCredit, AudioItemMetadata, StoredListen
from scrobbler.services.offline_queue import OfflineQueue, QueueStoreError


def stored(item_id, ts, metadata=None):
    return StoredListen(item_id=item_id, listened_at=ts, metadata=metadata)


@pytest.fixture
def queue(tmp_path):
    return OfflineQueue(tmp_path / "queue.json")


class TestQueueContent:
    async def test_get_keeps_insertion_order(self, queue):
        listens = [stored("b", 30), stored("a", 10), stored("c", 20)]
        for listen in listens:
            await queue.add("acc", listen)

        assert await queue.get("acc") == listens

    async def test_get_unknown_account_is_empty(self, queue):
        assert await queue.get("nobody") == []

    async def test_get_returns_a_snapshot(self, queue):
        await queue.add("acc", stored("a", 10))

        snapshot = await queue.get("acc")
        snapshot.clear()

        assert await queue.size("acc") == 1

    async def test_duplicates_are_kept(self, queue):
        await queue.add("acc", stored("a", 10))
        await queue.add("acc", stored("a", 10))

        assert await queue.size("acc") == 2

    async def test_remove_matches_item_and_timestamp(self, queue):
        for listen in [stored("a", 10), stored("a", 20), stored("b", 10)]:
            await queue.add("acc", listen)

        removed = await queue.remove("acc", [stored("a", 10)])

        assert removed == 1
        assert await queue.get("acc") == [stored("a", 20), stored("b", 10)]

    async def test_remove_ignores_metadata(self, queue):
        await queue.add("acc", stored("a", 10))

        await queue.remove("acc", [stored("a", 10, AudioItemMetadata(recording_mbid="rec-1"))])

        assert await queue.get("acc") == []

    async def test_remove_is_idempotent(self, queue):
        await queue.add("acc", stored("a", 10))
        await queue.remove("acc", [stored("a", 10)])

        assert await queue.remove("acc", [stored("a", 10)]) == 0
        assert await queue.remove("other", [stored("a", 10)]) == 0

    async def test_remove_only_touches_one_account(self, queue):
        await queue.add("acc", stored("a", 10))
        await queue.add("other", stored("a", 10))

        await queue.remove("acc", [stored("a", 10)])

        assert await queue.get("other") == [stored("a", 10)]

    async def test_size(self, queue):
        await queue.add("acc", stored("a", 10))
        await queue.add("acc", stored("b", 10))
        await queue.add("other", stored("a", 10))

        assert await queue.size("acc") == 2
        assert await queue.size() == 3


class TestQueuePersistence:
    async def test_save_then_restore_round_trip(self, tmp_path):
        path = tmp_path / "queue.json"
        metadata = AudioItemMetadata(
            recording_mbid="rec-1",
            artist_credits=[ArtistCredit(name="A", join_phrase=" & "), ArtistCredit(name="B")],
            isrcs=["USABC1234567"],
        )
        original = OfflineQueue(path)
        await original.add("acc", stored("a", 10, metadata))
        await original.add("acc", stored("b", 20))
        await original.add("other", stored("c", 30))
        await original.save()

        restored = OfflineQueue(path)
        await restored.restore()

        assert await restored.get("acc") == await original.get("acc")
        assert await restored.get("other") == [stored("c", 30)]

    async def test_document_layout(self, queue):
        await queue.add("acc", stored("a", 10, AudioItemMetadata(recording_mbid="rec-1")))
        await queue.add("acc", stored("b", 20))
        await queue.save()

        document = json.loads(queue.path.read_text(encoding="utf-8"))

        assert list(document) == ["acc"]
        first, second = document["acc"]
        assert first["itemId"] == "a"
        assert first["listenedAt"] == 10
        assert first["metadata"]["recordingMbid"] == "rec-1"
        assert second == {"itemId": "b", "listenedAt": 20}

    async def test_add_with_save_persists(self, queue):
        await queue.add("acc", stored("a", 10), save=True)

        assert queue.path.exists()
        restored = OfflineQueue(queue.path)
        await restored.restore()
        assert await restored.get("acc") == [stored("a", 10)]

    async def test_save_creates_parent_directories(self, tmp_path):
        queue = OfflineQueue(tmp_path / "state" / "nested" / "queue.json")
        await queue.add("acc", stored("a", 10))

        await queue.save()

        assert queue.path.exists()
        assert not queue.path.with_name("queue.json.tmp").exists()

    async def test_restore_missing_document_is_empty(self, queue):
        await queue.restore()

        assert await queue.size() == 0

    @pytest.mark.parametrize("content", [
        b"{not json",
        b'{"acc": [{"itemId": "a"}]}',
        b"[]",
        b'{"acc": [\xff]}',
    ])
    async def test_restore_malformed_document_keeps_state(self, queue, content):
        await queue.add("acc", stored("a", 10))
        queue.path.write_bytes(content)

        with pytest.raises(QueueStoreError):
            await queue.restore()

        assert await queue.get("acc") == [stored("a", 10)]
