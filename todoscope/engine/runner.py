"""Recursive directory search through an external ripgrep process.

A run never blocks its caller. ``DirectorySearchRunner.run`` starts ripgrep
with its JSON output redirected to a scratch file of its own, arms a one-shot
timer, and returns. When the process exits the scratch file is parsed (only
on a clean exit), removed, and exactly one ``SearchOutcome`` is handed to the
completion path: the ``search.completed`` event on the bus by default.

A run still going when the timer fires is marked slow. The orchestrator uses
that flag, not the timer, to decide between showing results and caching
them.
"""

import asyncio
import base64
import json
import os
import tempfile
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import aiofiles
import ulid
from loguru import logger

from .bus import Event, EventBus, get_event_bus
from .config import Config, NarrowMapping
from .keywords import KeywordCatalog
from .models import Candidate, FileLocation, resolve_narrow_key


SEARCH_COMPLETED = "search.completed"
SEARCH_SLOW = "search.slow"

# ripgrep exit status for "finished with matches".
FINISHED = 0

CommandBuilder = Callable[[str, str], List[str]]
OutcomeCallback = Callable[["SearchOutcome"], Any]

# Bus of the orchestrator currently dispatching to a custom search function.
active_event_bus: ContextVar[Optional[EventBus]] = ContextVar("active_event_bus", default=None)


@dataclass
class SearchOutcome:
    """Terminal result of one directory search."""
    directory: str
    candidates: List[Candidate]
    became_slow: bool = False
    finished: bool = True

    def to_event(self) -> Event:
        return Event(
            type=SEARCH_COMPLETED,
            data={
                "directory": self.directory,
                "candidates": self.candidates,
                "became_slow": self.became_slow,
                "finished": self.finished,
            },
            source="directory_search",
        )

    @classmethod
    def from_event(cls, event: Event) -> "SearchOutcome":
        data = event.data
        return cls(
            directory=data["directory"],
            candidates=list(data.get("candidates") or []),
            became_slow=bool(data.get("became_slow", False)),
            finished=bool(data.get("finished", True)),
        )


@dataclass
class SearchRun:
    """State of one ripgrep invocation, from launch to exit."""
    run_id: str
    directory: str
    scratch_path: Path
    started_at: float
    process: Optional[asyncio.subprocess.Process] = None
    timer: Optional[asyncio.TimerHandle] = None
    task: Optional["asyncio.Task[SearchOutcome]"] = None
    became_slow: bool = False
    settled: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def elapsed(self) -> float:
        return asyncio.get_running_loop().time() - self.started_at


def publish_search_outcome(
    directory: str,
    candidates: List[Candidate],
    became_slow: bool = False,
    finished: bool = True,
    event_bus: Optional[EventBus] = None,
) -> bool:
    """Completion path for custom directory search functions.

    Without an explicit ``event_bus`` the outcome goes to the bus of the
    orchestrator that called the search function, including from tasks the
    function started, and to the global bus otherwise.
    """
    bus = event_bus or active_event_bus.get() or get_event_bus()
    outcome = SearchOutcome(directory, list(candidates), became_slow, finished)
    return bus.emit_nowait(outcome.to_event())


def _raw_data(value: Dict[str, Any]) -> Optional[bytes]:
    """Bytes of an ``rg --json`` data object, ``{"text": ...}`` or ``{"bytes": base64}``."""
    if "text" in value:
        return value["text"].encode("utf-8")
    if "bytes" in value:
        return base64.b64decode(value["bytes"])
    return None


def parse_match_record(
    record: Dict[str, Any],
    catalog: KeywordCatalog,
    mapping: NarrowMapping,
) -> List[Candidate]:
    """Candidates of one ``rg --json`` record, one per submatch.

    Records other than ``match`` yield nothing. Lines that are not valid
    UTF-8 arrive base64 encoded; submatch offsets index their raw bytes.
    Columns are 1-based character columns.
    """
    if not isinstance(record, dict) or record.get("type") != "match":
        return []
    data = record["data"]
    raw_path = _raw_data(data["path"])
    raw = _raw_data(data["lines"])
    if raw_path is None or raw is None:
        return []

    path = os.fsdecode(raw_path)
    line_number = int(data["line_number"])
    name = os.path.basename(path)
    path = os.path.abspath(path)

    candidates = []
    for submatch in data.get("submatches", []):
        start, end = submatch["start"], submatch["end"]
        matched = submatch["match"].get("text") or raw[start:end].decode("utf-8", "replace")
        keyword = catalog.keyword_of(matched) or matched.rstrip(":").strip()
        if not keyword:
            continue
        column = len(raw[:start].decode("utf-8", "replace")) + 1
        candidates.append(Candidate(
            source_name=name,
            line_number=str(line_number),
            keyword_type=keyword,
            location=FileLocation(path=path, line=line_number, column=column),
            narrow_key=resolve_narrow_key(keyword, mapping),
            excerpt=raw[end:].decode("utf-8", "replace").strip(),
        ))
    return candidates


class DirectorySearchRunner:
    """Launches ripgrep runs and turns their output into candidates."""

    def __init__(
        self,
        config: Config,
        catalog: KeywordCatalog,
        event_bus: Optional[EventBus] = None,
        command_builder: Optional[CommandBuilder] = None,
    ):
        """
        Initialize the runner.

        Args:
            config: Settings for threshold, ripgrep and narrow mapping
            catalog: Supplies the search regexp and keyword extraction
            event_bus: Bus receiving slow notices and outcomes
            command_builder: ``(directory, regexp) -> argv``; defaults to
                :meth:`build_command`
        """
        self.config = config
        self.catalog = catalog
        self.event_bus = event_bus or get_event_bus()
        self.command_builder = command_builder or self.build_command

    def build_command(self, directory: str, regexp: str) -> List[str]:
        rg = self.config.ripgrep
        command = [rg.executable, "--json", "--no-messages", *rg.args]
        for glob in rg.globs:
            command.extend(["--glob", glob])
        command.extend(["-e", regexp, "--", directory])
        return command

    def run(self, directory: str, on_complete: Optional[OutcomeCallback] = None) -> SearchRun:
        """
        Start searching ``directory`` and return immediately.

        Must be called from a running event loop.

        Args:
            directory: Absolute directory to search
            on_complete: Receives the outcome instead of the bus

        Returns:
            The run; its ``task`` resolves to the delivered outcome
        """
        loop = asyncio.get_running_loop()
        run_id = str(ulid.ULID())
        fd, scratch = tempfile.mkstemp(prefix=f"todoscope-rg-{run_id}-", suffix=".jsonl")
        os.close(fd)

        run = SearchRun(run_id=run_id, directory=directory,
                        scratch_path=Path(scratch), started_at=loop.time())
        run.timer = loop.call_later(self.config.slow_threshold, self._mark_slow, run)
        run.task = asyncio.create_task(self._execute(run, on_complete))
        logger.debug(f"Search {run_id} started in {directory}")
        return run

    def _mark_slow(self, run: SearchRun) -> None:
        run.became_slow = True
        run.settled.set()
        logger.info(f"Search in {run.directory} is slow, results will be cached")
        self.event_bus.emit_nowait(Event(
            type=SEARCH_SLOW,
            data={"directory": run.directory, "threshold": self.config.slow_threshold},
            source="directory_search",
        ))

    async def _execute(self, run: SearchRun, on_complete: Optional[OutcomeCallback]) -> SearchOutcome:
        outcome = SearchOutcome(run.directory, [], became_slow=False, finished=False)
        try:
            returncode = await self._spawn(run)
            run.timer.cancel()
            if returncode == FINISHED:
                candidates = await self._parse(run)
                outcome = SearchOutcome(run.directory, candidates, run.became_slow, True)
            else:
                logger.debug(f"Search {run.run_id} exited with {returncode}, nothing to parse")
                outcome = SearchOutcome(run.directory, [], run.became_slow, False)
        finally:
            run.timer.cancel()
            self._discard_scratch(run)
            logger.debug(f"Search {run.run_id} done after {run.elapsed:.2f}s")
            self._deliver(outcome, on_complete)
            run.settled.set()
        return outcome

    async def _spawn(self, run: SearchRun) -> Optional[int]:
        command = self.command_builder(run.directory, self.catalog.regexp)
        with open(run.scratch_path, "wb") as scratch:
            try:
                run.process = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=scratch,
                    stderr=asyncio.subprocess.DEVNULL,
                )
            except OSError as e:
                logger.warning(f"Could not start directory search: {e}")
                return None
            return await run.process.wait()

    async def _parse(self, run: SearchRun) -> List[Candidate]:
        mapping = self.config.narrow_mapping()
        candidates = []
        async with aiofiles.open(run.scratch_path, "r", encoding="utf-8", errors="replace") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed search output: {line[:80]}")
                    continue
                candidates.extend(parse_match_record(record, self.catalog, mapping))
        return candidates

    def _discard_scratch(self, run: SearchRun) -> None:
        try:
            run.scratch_path.unlink()
        except FileNotFoundError:
            pass

    def _deliver(self, outcome: SearchOutcome, on_complete: Optional[OutcomeCallback]) -> None:
        if on_complete is not None:
            on_complete(outcome)
        else:
            self.event_bus.emit_nowait(outcome.to_event())
