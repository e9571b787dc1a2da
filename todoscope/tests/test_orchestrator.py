"""Tests for the search orchestrator."""

import asyncio
import sys

import pytest

from todoscope.engine.buffers import BufferRegistry
from todoscope.engine.bus import EventBus
from todoscope.engine.config import Config
from todoscope.engine.errors import NarrowConfigError, PickerBusyError
from todoscope.engine.models import BufferLocation, FileLocation
from todoscope.engine.picker import FILE_LOCATION, POSITION
from todoscope.engine.orchestrator import SearchOrchestrator
from todoscope.engine.project import find_project_root
from conftest import FakePicker, rg_match


HOOKS = """\
import asyncio

from todoscope.engine.models import Candidate, FileLocation
from todoscope.engine.runner import publish_search_outcome


def found():
    return [Candidate("x.c", "4", "HACK", FileLocation("/nowhere/x.c", 4, 1), "h", "later")]


def search(directory):
    publish_search_outcome(directory, found())


def search_later(directory):
    async def finish():
        await asyncio.sleep(0.05)
        publish_search_outcome(directory, found())
    asyncio.get_running_loop().create_task(finish())
"""


def main_records(source_tree):
    main = str(source_tree / "src" / "main.c")
    return [
        rg_match(main, 2, "    // TODO: fix this", (7, 12)),
        rg_match(main, 3, "    return 0; // BUG crash", (17, 20)),
    ]


@pytest.fixture
def notices():
    return []


@pytest.fixture
def hook_module(tmp_path, monkeypatch):
    """Name of an importable module holding directory search functions."""
    name = "todoscope_search_hooks"
    (tmp_path / f"{name}.py").write_text(HOOKS)
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.delitem(sys.modules, name, raising=False)
    return name


def make_orchestrator(picker, notices, fake_rg=None, registry=None, **settings):
    settings.setdefault("slow_threshold", 10.0)
    orchestrator = SearchOrchestrator(
        Config(**settings),
        picker,
        registry=registry,
        event_bus=EventBus(),
        project_resolver=lambda start: None,
        notifier=notices.append,
    )
    if fake_rg is not None:
        orchestrator.runner.command_builder = fake_rg
    return orchestrator


class TestBufferSearch:
    """Searches over loaded buffers."""

    def test_jump_to_chosen_keyword(self, notices):
        registry = BufferRegistry()
        buffer = registry.create("main.c", "int x;\n// TODO one\nint y; // FIXME two\n")
        picker = FakePicker(index=1)
        orchestrator = make_orchestrator(picker, notices, registry=registry)

        target = orchestrator.search_current_buffer()

        [request] = picker.requests
        assert request.category == POSITION
        assert [row.candidate.keyword_type for row in request.rows] == ["TODO", "FIXME"]
        assert target.buffer is buffer
        assert (target.line, target.column) == (3, 11)
        assert buffer.text[buffer.point:buffer.point + 5] == "FIXME"
        assert orchestrator.last_jump is target

    def test_jump_widens_when_target_is_outside(self, notices):
        registry = BufferRegistry()
        buffer = registry.create("a.py", "# TODO top\nx = 1\n")
        buffer.narrow_to(11, 17)
        orchestrator = make_orchestrator(FakePicker(), notices, registry=registry)

        target = orchestrator.search_current_buffer()

        assert target.line == 1
        assert (buffer.point_min, buffer.point_max) == (0, len(buffer))

    def test_all_buffers_uses_highlighted_ones(self, notices):
        registry = BufferRegistry()
        registry.create("a.py", "# TODO a\n")
        registry.create("b.py", "# TODO b\n", keyword_highlighting=False)
        second = registry.create("c.py", "# HACK c\n")
        picker = FakePicker(index=1)
        orchestrator = make_orchestrator(picker, notices, registry=registry)

        target = orchestrator.search_all_buffers()

        assert [row.candidate.source_name for row in picker.requests[0].rows] == ["a.py", "c.py"]
        assert target.buffer is second
        assert registry.current is second

    def test_no_keywords_is_a_notice(self, notices):
        registry = BufferRegistry()
        registry.create("a.py", "x = 1\n")
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, registry=registry)

        assert orchestrator.search_current_buffer() is None
        assert picker.requests == []
        assert notices == ["No keyword occurrences found"]

    def test_no_highlighted_buffers_is_a_notice(self, notices):
        registry = BufferRegistry()
        registry.create("a.py", "# TODO\n", keyword_highlighting=False)
        orchestrator = make_orchestrator(FakePicker(), notices, registry=registry)
        assert orchestrator.search_all_buffers() is None
        assert notices == ["No keyword occurrences found"]

    def test_cancel_is_silent(self, notices):
        registry = BufferRegistry()
        buffer = registry.create("a.py", "x = 1\n# TODO\n")
        buffer.goto(3)
        orchestrator = make_orchestrator(FakePicker(cancel=True), notices, registry=registry)

        assert orchestrator.search_current_buffer() is None
        assert notices == []
        assert buffer.point == 3

    def test_comments_only_setting(self, notices):
        registry = BufferRegistry()
        registry.create("a.py", 's = "TODO"\n# FIXME\n')
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, registry=registry, comments_only=True)

        orchestrator.search_current_buffer()

        assert [row.candidate.keyword_type for row in picker.requests[0].rows] == ["FIXME"]


class TestDirectorySearch:
    """Directory searches, the slow path and the cache."""

    @pytest.mark.asyncio
    async def test_fast_search_opens_picker(self, fake_rg, source_tree, notices):
        fake_rg.records = main_records(source_tree)
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, fake_rg)
        await orchestrator.start()

        run = orchestrator.search_directory(str(source_tree))
        await orchestrator.wait_idle()

        assert run.directory == str(source_tree.resolve())
        [request] = picker.requests
        assert request.category == FILE_LOCATION
        assert [row.candidate.keyword_type for row in request.rows] == ["TODO", "BUG"]
        assert len(orchestrator.cache) == 0
        target = orchestrator.last_jump
        assert target.buffer.path == (source_tree / "src" / "main.c").resolve()
        assert (target.line, target.column) == (2, 8)
        assert orchestrator.running_searches() == []
        await orchestrator.stop()

    @pytest.mark.asyncio
    async def test_slow_search_fills_cache(self, fake_rg, source_tree, notices):
        fake_rg.records = main_records(source_tree)
        fake_rg.delay = 0.6
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, fake_rg, slow_threshold=0.2)
        await orchestrator.start()

        run = orchestrator.search_directory(str(source_tree))
        await orchestrator.wait_idle()

        assert run.became_slow
        assert picker.requests == []
        key = str(source_tree.resolve())
        assert [c.keyword_type for c in orchestrator.cache.get(key)] == ["TODO", "BUG"]
        assert any("takes more than" in n for n in notices)
        assert any(n.startswith(f"Caching complete for {key}") for n in notices)

        assert orchestrator.search_directory(str(source_tree)) is None
        assert len(picker.requests) == 1
        assert len(fake_rg.calls) == 1
        await orchestrator.stop()

    @pytest.mark.asyncio
    async def test_failed_search_does_nothing(self, fake_rg, source_tree, notices):
        fake_rg.records = main_records(source_tree)
        fake_rg.exit_code = 2
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, fake_rg)
        await orchestrator.start()

        orchestrator.search_directory(str(source_tree))
        await orchestrator.wait_idle()

        assert picker.requests == []
        assert len(orchestrator.cache) == 0
        assert notices == []
        await orchestrator.stop()

    @pytest.mark.asyncio
    async def test_duplicate_search_is_not_relaunched(self, fake_rg, source_tree, notices):
        fake_rg.records = main_records(source_tree)
        fake_rg.delay = 0.3
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, fake_rg)
        await orchestrator.start()

        first = orchestrator.search_directory(str(source_tree))
        second = orchestrator.search_directory(str(source_tree))
        await orchestrator.wait_idle()

        assert second is first
        assert len(fake_rg.calls) == 1
        assert notices == [f"A search in {source_tree.resolve()} is already running"]
        assert len(picker.requests) == 1
        await orchestrator.stop()

    @pytest.mark.asyncio
    async def test_configured_search_function_reports_back(self, hook_module, source_tree, notices):
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, search_function=f"{hook_module}:search")
        await orchestrator.start()

        assert orchestrator.search_directory(str(source_tree)) is None
        await orchestrator.wait_idle()

        assert [row.candidate.excerpt for row in picker.requests[0].rows] == ["later"]
        assert orchestrator.running_searches() == []
        assert orchestrator.last_jump is None

        orchestrator.search_directory(str(source_tree))
        await orchestrator.wait_idle()
        assert len(picker.requests) == 2
        assert not any("already running" in n for n in notices)
        await orchestrator.stop()

    @pytest.mark.asyncio
    async def test_search_function_may_report_from_a_task(self, hook_module, source_tree, notices):
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, search_function=f"{hook_module}.search_later")
        await orchestrator.start()

        orchestrator.search_directory(str(source_tree))
        assert orchestrator.running_searches() == [str(source_tree.resolve())]
        await asyncio.sleep(0.3)
        await orchestrator.wait_idle()

        assert len(picker.requests) == 1
        assert orchestrator.running_searches() == []
        await orchestrator.stop()

    def test_narrow_conflict_stops_before_launch(self, fake_rg, source_tree, notices):
        orchestrator = make_orchestrator(FakePicker(), notices, fake_rg,
                                         narrow=[("t", "TODO")], other=("t", "OTHER"))
        with pytest.raises(NarrowConfigError):
            orchestrator.search_directory(str(source_tree))
        assert fake_rg.calls == []

    def test_cancelled_prompt_does_nothing(self, fake_rg, notices):
        picker = FakePicker()
        orchestrator = make_orchestrator(picker, notices, fake_rg)
        assert orchestrator.search_directory(prompt=True) is None
        assert fake_rg.calls == []


class TestDirectoryResolution:
    """Which directory a search targets."""

    def test_precedence(self, tmp_path, notices):
        default = tmp_path / "default"
        default.mkdir()
        picked = tmp_path / "picked"
        picked.mkdir()
        picker = FakePicker()
        picker.directory = str(picked)
        orchestrator = make_orchestrator(picker, notices, default_directory=default)

        assert orchestrator.resolve_directory(str(tmp_path)) == str(tmp_path.resolve())
        assert orchestrator.resolve_directory(prompt=True) == str(picked.resolve())
        assert orchestrator.resolve_directory() == str(default.resolve())

        orchestrator.project_resolver = lambda start: tmp_path
        assert orchestrator.resolve_directory() == str(tmp_path.resolve())

    def test_default_follows_current_buffer(self, tmp_path, notices):
        path = tmp_path / "lib" / "a.py"
        path.parent.mkdir()
        path.write_text("# TODO\n")
        registry = BufferRegistry()
        registry.switch_to(registry.find_file(path))
        orchestrator = make_orchestrator(FakePicker(), notices, registry=registry)
        assert orchestrator.default_directory() == path.parent.resolve()

    def test_project_root_from_markers(self, tmp_path):
        root = tmp_path / "proj"
        (root / ".git").mkdir(parents=True)
        nested = root / "src" / "pkg"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == root.resolve()
        assert find_project_root(nested, markers=(".todoscope-root",)) is None


class TestCache:
    """Clearing cached directory results."""

    def test_clear_one_entry(self, notices):
        picker = FakePicker()
        picker.choice = "/a"
        orchestrator = make_orchestrator(picker, notices)
        orchestrator.cache.put("/a", [])
        orchestrator.cache.put("/b", [])

        assert orchestrator.clear_cache() == ["/a"]
        assert picker.choice_lists == [["/a", "/b"]]
        assert orchestrator.cache.keys() == ["/b"]

    def test_clear_all(self, notices):
        orchestrator = make_orchestrator(FakePicker(), notices)
        orchestrator.cache.put("/a", [])
        orchestrator.cache.put("/b", [])

        assert orchestrator.clear_cache(all_entries=True) == ["/a", "/b"]
        assert len(orchestrator.cache) == 0

    def test_cancel_keeps_entries(self, notices):
        orchestrator = make_orchestrator(FakePicker(), notices)
        orchestrator.cache.put("/a", [])
        assert orchestrator.clear_cache() == []
        assert "/a" in orchestrator.cache

    def test_empty_cache(self, notices):
        orchestrator = make_orchestrator(FakePicker(), notices)
        assert orchestrator.clear_cache() == []
        assert notices == ["No cached directories"]


class TestJump:
    """Jumping to locations that may have gone away."""

    def test_missing_file(self, tmp_path, notices):
        orchestrator = make_orchestrator(FakePicker(), notices)
        assert orchestrator.jump(FileLocation(str(tmp_path / "gone.c"), 1, 1)) is None
        assert orchestrator.last_jump is None

    def test_killed_buffer(self, notices):
        registry = BufferRegistry()
        buffer = registry.create("a.py", "# TODO\n")
        location = BufferLocation(buffer.marker(2))
        registry.kill(buffer)
        orchestrator = make_orchestrator(FakePicker(), notices, registry=registry)

        assert orchestrator.jump(location) is None
        assert notices == ["The buffer of this keyword no longer exists"]

    def test_file_location_clamps_past_line_end(self, tmp_path, notices):
        path = tmp_path / "a.c"
        path.write_text("ab\ncd\n")
        orchestrator = make_orchestrator(FakePicker(), notices)
        target = orchestrator.jump(FileLocation(str(path), 2, 40))
        assert (target.line, target.column) == (2, 3)
        assert str(target) == f"{path.resolve()}:2:3"


def test_nested_picker_is_refused():
    class NestedPicker(FakePicker):
        def _select(self, request):
            return self.choose("again", ["x"])

    picker = NestedPicker()
    picker.choice = "x"
    with pytest.raises(PickerBusyError):
        picker.select(None)
    assert not picker.active
    assert picker.choose("once", ["x"]) == "x"
