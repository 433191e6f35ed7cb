import asyncio
import json

import pytest

from turnstore.cli import main
from turnstore.store import MemoryStore, Turn


@pytest.fixture
def populated(make_config):
    config = make_config(chunk_size_bytes=50)

    async def fill():
        async with MemoryStore(config) as store:
            for i in range(3):
                await store.append(Turn(role="user", text=f"cli turn {i}"))

    asyncio.run(fill())
    return config


class TestStatsCommand:
    def test_json_output(self, populated, capsys):
        code = main(
            [
                "stats",
                "--directory",
                str(populated.directory),
                "--output-format",
                "json",
            ]
        )
        assert code == 0

        stats = json.loads(capsys.readouterr().out)
        log_size = (populated.directory / "conversations.log").stat().st_size
        assert stats["log_bytes"] == log_size
        assert stats["indexed_end"] == log_size
        assert stats["unindexed_bytes"] == 0
        assert stats["indexed_rows"] >= 1

    def test_rich_output(self, populated):
        assert main(["stats", "--directory", str(populated.directory)]) == 0

    def test_missing_store(self, tmp_path):
        assert main(["stats", "--directory", str(tmp_path / "nope")]) == 1

    def test_unknown_command(self):
        assert main(["frobnicate"]) != 0
