import numpy as np
import pytest
from conftest import BatchHashEmbedding

from turnstore.errors import EmbeddingError, FormatError, StoreLockedError
from turnstore.paths import index_path
from turnstore.rebuild import (
    REBUILD_FILENAME,
    iter_chunk_windows,
    rebuild_index,
)
from turnstore.record_log import RecordLog
from turnstore.store import MemoryStore, Turn
from turnstore.vector_index import VectorIndex


async def fill(config, count: int) -> None:
    async with MemoryStore(config) as store:
        for i in range(count):
            await store.append(Turn(role="user", text=f"message number {i}"))


def read_index(config):
    index = VectorIndex(config.directory, config.embedding_provider.dim)
    data = index.read_all()
    index.close()
    return data


class TestChunkWindows:
    def test_windows_close_at_threshold(self, tmp_path):
        with RecordLog(tmp_path, fsync=False) as log:
            for text in ["aaaa", "bb", "cccccc", "d"]:
                log.append(text)
            windows = [
                (w.offset, w.length) for w in iter_chunk_windows(log, 6)
            ]
        # lines are 5, 3, 7, 2 bytes
        assert windows == [(0, 8), (8, 7), (15, 2)]

    def test_empty_log(self, tmp_path):
        with RecordLog(tmp_path, fsync=False) as log:
            assert list(iter_chunk_windows(log, 10)) == []


@pytest.mark.asyncio
class TestRebuildIndex:
    async def test_matches_online_index(self, make_config):
        config = make_config(chunk_size_bytes=90)
        await fill(config, 12)
        original = read_index(config)

        result = await rebuild_index(config, batch_size=4)
        rebuilt = read_index(config)

        assert result.chunks == len(original)
        assert rebuilt.offsets.tolist() == original.offsets.tolist()
        assert rebuilt.lengths.tolist() == original.lengths.tolist()
        np.testing.assert_allclose(rebuilt.vectors, original.vectors)
        np.testing.assert_allclose(rebuilt.norms, original.norms)

    async def test_recovers_corrupt_index(self, make_config):
        config = make_config(chunk_size_bytes=60)
        await fill(config, 6)
        index_path(config.directory).write_bytes(b"corrupted bytes")

        with pytest.raises(FormatError):
            MemoryStore(config).open()

        await rebuild_index(config)

        async with MemoryStore(config) as store:
            assert store.bytes_since_flush == 0
            results = await store.query("message number 3", top_k=2)
        assert len(results) == 2

    async def test_uses_batch_embedding(self, make_config):
        provider = BatchHashEmbedding()
        config = make_config(embedding_provider=provider, chunk_size_bytes=30)
        await fill(config, 10)
        provider.calls.clear()

        result = await rebuild_index(config, batch_size=3)

        assert provider.calls == []
        assert [len(b) for b in provider.batch_calls][:1] == [3]
        assert sum(len(b) for b in provider.batch_calls) == result.chunks

    async def test_empty_log_removes_index(self, make_config):
        config = make_config()
        config.directory.mkdir(parents=True)
        index_path(config.directory).write_bytes(b"stale")

        result = await rebuild_index(config)

        assert result.chunks == 0
        assert not index_path(config.directory).exists()

    async def test_failure_keeps_old_index(self, make_config, provider):
        config = make_config(chunk_size_bytes=60)
        await fill(config, 4)
        before = index_path(config.directory).read_bytes()
        provider.fail = True

        with pytest.raises(EmbeddingError):
            await rebuild_index(config)

        assert index_path(config.directory).read_bytes() == before
        assert not (config.directory / REBUILD_FILENAME).exists()

    async def test_refuses_open_store(self, make_config):
        config = make_config()
        async with MemoryStore(config):
            with pytest.raises(StoreLockedError):
                await rebuild_index(config)

    async def test_rejects_bad_batch_size(self, make_config):
        with pytest.raises(ValueError):
            await rebuild_index(make_config(), batch_size=0)
