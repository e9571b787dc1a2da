"""Search orchestrator: picks the search path, caches slow results, jumps.

Buffer searches are synchronous: scan, format, pick, jump. Directory
searches consult the result cache first; on a miss they dispatch to the
directory search function and return. The outcome comes back as a
``search.completed`` event on the bus, and this class is the only consumer
of that event and the only writer of the cache:

- run finished before the slow threshold: the picker opens right away
- run became slow: results go into the cache and the user is told to search
  again; no picker is shown for that run
- run did not finish cleanly: nothing happens
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from .buffers import BufferRegistry, TextBuffer
from .bus import Event, EventBus, get_event_bus
from .cache import ResultCache
from .config import Config, PreviewConfig
from .errors import NoResultsError, PickerCancelled
from .keywords import KeywordCatalog
from .models import BufferLocation, Candidate, Location, format_candidates
from .picker import FILE_LOCATION, POSITION, Picker, PickerRequest
from .project import ProjectResolver, find_project_root
from .runner import (
    SEARCH_COMPLETED, SEARCH_SLOW, DirectorySearchRunner, SearchOutcome, SearchRun, active_event_bus
)
from .scanner import scan_buffers


Notifier = Callable[[str], None]


@dataclass
class JumpTarget:
    """Where a jump landed."""
    buffer: TextBuffer
    line: int
    column: int

    @property
    def line_text(self) -> str:
        start, end = self.buffer.line_bounds(self.buffer.point)
        return self.buffer.substring(start, end)

    def __str__(self) -> str:
        where = self.buffer.path or self.buffer.name
        return f"{where}:{self.line}:{self.column}"


def _log_notice(message: str) -> None:
    logger.info(message)


class SearchOrchestrator:
    """Entry point for every search command."""

    def __init__(
        self,
        config: Config,
        picker: Picker,
        registry: Optional[BufferRegistry] = None,
        catalog: Optional[KeywordCatalog] = None,
        cache: Optional[ResultCache] = None,
        event_bus: Optional[EventBus] = None,
        runner: Optional[DirectorySearchRunner] = None,
        project_resolver: ProjectResolver = find_project_root,
        notifier: Optional[Notifier] = None,
    ):
        """
        Initialize search orchestrator.

        Args:
            config: Settings, owner of the memoized narrow mapping
            picker: Modal selection UI
            registry: Open buffers
            catalog: Keyword matcher and styles; built from config if omitted
            cache: Directory result cache
            event_bus: Bus carrying search outcomes
            runner: Default directory search function
            project_resolver: ``start -> project root or None``
            notifier: Shows user-facing notices
        """
        self.config = config
        self.picker = picker
        self.registry = registry if registry is not None else BufferRegistry()
        self.catalog = catalog if catalog is not None else KeywordCatalog(config.keywords)
        self.cache = cache if cache is not None else ResultCache()
        self.event_bus = event_bus if event_bus is not None else get_event_bus()
        self.runner = runner if runner is not None else DirectorySearchRunner(
            config, self.catalog, self.event_bus
        )
        self.project_resolver = project_resolver
        self.notify = notifier or _log_notice

        self.last_jump: Optional[JumpTarget] = None
        self._inflight: Dict[str, Optional[SearchRun]] = {}

        self.event_bus.subscribe(SEARCH_COMPLETED, self._on_search_completed)
        self.event_bus.subscribe(SEARCH_SLOW, self._on_search_slow)

    async def start(self) -> None:
        if not self.event_bus.running:
            await self.event_bus.start()

    async def stop(self) -> None:
        await self.wait_idle()
        await self.event_bus.stop()

    async def wait_idle(self) -> None:
        """Wait for running directory searches and their delivery."""
        tasks = [run.task for run in self._inflight.values() if run is not None and run.task]
        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Directory search failed: {result}")
        await self.event_bus.drain()

    def running_searches(self) -> List[str]:
        return list(self._inflight)

    # Buffer searches

    def search_current_buffer(self) -> Optional[JumpTarget]:
        """Search the current buffer and jump to the chosen keyword."""
        return self._search_buffers([self.registry.current], "Go to keyword")

    def search_all_buffers(self) -> Optional[JumpTarget]:
        """Search every buffer with keyword highlighting active."""
        return self._search_buffers(self.registry.highlighted(), "Go to keyword in buffers")

    def _search_buffers(self, buffers: Sequence[TextBuffer], prompt: str) -> Optional[JumpTarget]:
        mapping = self.config.narrow_mapping()
        candidates: List[Candidate] = []
        if buffers:
            candidates = scan_buffers(buffers, self.catalog, mapping,
                                      comments_only=self.config.comments_only)
        return self._present(candidates, prompt, POSITION, PreviewConfig())

    # Directory searches

    def default_directory(self) -> Path:
        if self.config.default_directory is not None:
            return Path(self.config.default_directory).expanduser()
        if self.registry.buffers and self.registry.current.path is not None:
            return self.registry.current.path.parent
        return Path.cwd()

    def resolve_directory(self, directory: Optional[str] = None, prompt: bool = False) -> str:
        """Target directory: explicit, prompted, project root, then default."""
        if directory is None and prompt:
            directory = self.picker.read_directory("Search directory",
                                                   str(self.default_directory()))
        if directory is None:
            root = self.project_resolver(self.default_directory())
            directory = root if root is not None else self.default_directory()
        return str(Path(directory).expanduser().resolve())

    def search_directory(self, directory: Optional[str] = None, prompt: bool = False) -> Optional[SearchRun]:
        """
        Show keywords under a directory, from the cache or a new search.

        Must be called from a running event loop when the cache misses.

        Returns:
            The launched (or already running) search, if any
        """
        try:
            target = self.resolve_directory(directory, prompt)
        except PickerCancelled:
            return None

        cached = self.cache.get(target)
        if cached is not None:
            logger.debug(f"Cache hit for {target}")
            self._present_directory(target, cached)
            return None

        if target in self._inflight:
            self.notify(f"A search in {target} is already running")
            return self._inflight[target]

        # Surface narrow mapping conflicts before anything is launched.
        self.config.narrow_mapping()
        search = self.config.load_search_function()
        if search is None:
            run = self.runner.run(target)
        else:
            token = active_event_bus.set(self.event_bus)
            try:
                result = search(target)
            finally:
                active_event_bus.reset(token)
            run = result if isinstance(result, SearchRun) else None
        self._inflight[target] = run
        logger.info(f"Searching {target}")
        return run

    def search_project(self) -> Optional[SearchRun]:
        """Search the current project, or the default directory outside one."""
        start = self.default_directory()
        root = self.project_resolver(start)
        if root is None:
            logger.debug(f"No project around {start}, using it as is")
            root = start
        return self.search_directory(str(root))

    def _present_directory(self, directory: str, candidates: Sequence[Candidate]) -> Optional[JumpTarget]:
        return self._present(candidates, f"Go to keyword in {directory}",
                             FILE_LOCATION, self.config.preview)

    def _on_search_slow(self, event: Event) -> None:
        self.notify(
            f"Searching {event.data['directory']} takes more than "
            f"{event.data['threshold']:g}s; results will be cached"
        )

    def _on_search_completed(self, event: Event) -> None:
        outcome = SearchOutcome.from_event(event)
        self._inflight.pop(outcome.directory, None)
        if not outcome.finished:
            logger.debug(f"Search in {outcome.directory} did not finish, dropping it")
            return
        if outcome.became_slow:
            self.cache.put(outcome.directory, outcome.candidates)
            self.notify(
                f"Caching complete for {outcome.directory}: "
                f"{len(outcome.candidates)} keyword(s); search again to browse them"
            )
            return
        self._present_directory(outcome.directory, outcome.candidates)

    # Cache management

    def clear_cache(self, all_entries: bool = False) -> List[str]:
        """
        Drop cached directory results.

        Args:
            all_entries: Clear everything instead of asking for one entry

        Returns:
            The directories that were cleared
        """
        keys = self.cache.keys()
        if not keys:
            self.notify("No cached directories")
            return []
        if all_entries:
            self.cache.clear_all()
            self.notify(f"Cleared {len(keys)} cached director{'y' if len(keys) == 1 else 'ies'}")
            return keys
        try:
            choice = self.picker.choose("Clear cache for", keys)
        except PickerCancelled:
            return []
        self.cache.clear(choice)
        self.notify(f"Cleared cache for {choice}")
        return [choice]

    # Selection and jumping

    def _present(
        self,
        candidates: Sequence[Candidate],
        prompt: str,
        category: str,
        preview: PreviewConfig,
    ) -> Optional[JumpTarget]:
        try:
            rows = format_candidates(candidates, self.catalog, self.config.styles)
        except NoResultsError as e:
            self.notify(str(e))
            return None

        request = PickerRequest(
            prompt=prompt,
            rows=rows,
            category=category,
            groups=self.config.narrow_mapping().groups,
            preview=preview,
        )
        try:
            row = self.picker.select(request)
        except PickerCancelled:
            logger.debug("Selection cancelled")
            return None
        return self.jump(row.location)

    def jump(self, location: Location) -> Optional[JumpTarget]:
        """Make the location's buffer current and move point there.

        Files that cannot be read are logged and yield None.
        """
        if isinstance(location, BufferLocation):
            buffer = location.marker.buffer
            if buffer is None:
                self.notify("The buffer of this keyword no longer exists")
                return None
            position = location.marker.position
        else:
            try:
                buffer = self.registry.find_file(location.path)
            except OSError as e:
                logger.warning(f"Cannot open {location.path}: {e}")
                return None
            position = buffer.position_of(location.line, location.column)

        if buffer in self.registry.buffers:
            self.registry.switch_to(buffer)
        if not buffer.point_min <= position <= buffer.point_max:
            buffer.widen()
        buffer.goto(position)
        line, column = buffer.line_column_at(buffer.point)
        self.last_jump = JumpTarget(buffer, line, column)
        logger.debug(f"Jumped to {self.last_jump}")
        return self.last_jump
