"""Tests for the process catalogs."""

import pytest

from ogc_processes.builtins import ECHO_PROCESS
from ogc_processes.errors import NoSuchProcess
from ogc_processes.models import Process
from ogc_processes.registry import InMemoryProcessRegistry, LayeredProcessRegistry


def stored(process_id, title="Stored"):
    return Process(id=process_id, title=title)


def ids(summaries):
    return [s.id for s in summaries]


class TestInMemoryRegistry:
    def test_listing_is_sorted_by_id(self):
        registry = InMemoryProcessRegistry([stored("b"), stored("a"), stored("c")])

        summaries, total = registry.list_processes(offset=1, limit=5)

        assert ids(summaries) == ["b", "c"]
        assert total == 3

    def test_unknown_process(self):
        with pytest.raises(NoSuchProcess):
            InMemoryProcessRegistry([]).get_process("nope")

    def test_exists(self):
        registry = InMemoryProcessRegistry([stored("a")])
        assert registry.exists("a")
        assert not registry.exists("b")


class TestLayeredRegistry:
    @pytest.fixture
    def layered(self):
        catalog = InMemoryProcessRegistry([stored("alpha"), stored("echo", "Stored echo"), stored("zulu")])
        return LayeredProcessRegistry([ECHO_PROCESS, stored("mike", "Built-in")], catalog)

    def test_builtins_available_without_seeding(self):
        layered = LayeredProcessRegistry([ECHO_PROCESS], InMemoryProcessRegistry([]))

        assert layered.get_process("echo") is ECHO_PROCESS
        summaries, total = layered.list_processes(offset=0, limit=10)
        assert ids(summaries) == ["echo"]
        assert total == 1

    def test_builtin_shadows_catalog_row(self, layered):
        assert layered.get_process("echo").title == "Echo"

        summaries, total = layered.list_processes(offset=0, limit=10)
        assert ids(summaries) == ["alpha", "echo", "mike", "zulu"]
        assert total == 4
        assert summaries[1].title == "Echo"

    def test_catalog_lookup(self, layered):
        assert layered.get_process("zulu").title == "Stored"
        with pytest.raises(NoSuchProcess):
            layered.get_process("nope")

    def test_middle_page(self, layered):
        summaries, total = layered.list_processes(offset=1, limit=2)
        assert ids(summaries) == ["echo", "mike"]
        assert total == 4

    def test_pages_cover_merged_catalog_exactly_once(self):
        catalog = InMemoryProcessRegistry([stored(f"p{i:02d}") for i in range(30)])
        builtins = [ECHO_PROCESS, stored("p10b", "Built-in"), stored("p29", "Built-in")]
        layered = LayeredProcessRegistry(builtins, catalog)

        seen = []
        offset = 0
        while True:
            page, total = layered.list_processes(offset=offset, limit=7)
            assert total == 32
            if not page:
                break
            seen.extend(ids(page))
            offset += 7

        expected = sorted({f"p{i:02d}" for i in range(30)} | {"echo", "p10b", "p29"})
        assert seen == expected
