"""
Status Synchronizer

Observes the shared status directory and keeps a parsed snapshot of every
agent's status document.

Two producers feed the same merge: a native directory watch (watchfiles)
and a periodic full rescan that catches anything the watch missed. Both
go through _process_file, which keys records by agent id and skips files
whose content matches the last text processed for that agent, so an update
seen by both producers is reported once.
"""

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Literal, Optional, Union

from watchfiles import Change, awatch

from autosdlc.errors import StatusIOError, StatusParseError
from autosdlc.models.agent import AgentStatus, AgentStatusRecord
from autosdlc.services.output_writer import STATUS_FILE_SUFFIX
from autosdlc.services.status_document import parse_status_document

logger = logging.getLogger(__name__)

StatusEventKind = Literal["created", "updated", "removed"]


@dataclass(frozen=True)
class StatusEvent:
    kind: StatusEventKind
    agent_id: str
    path: Path


StatusListener = Callable[[StatusEvent], Union[None, Awaitable[None]]]


def agent_id_from_filename(filename: str) -> Optional[str]:
    if not filename.endswith(STATUS_FILE_SUFFIX):
        return None
    agent_id = filename[: -len(STATUS_FILE_SUFFIX)]
    return agent_id or None


class StatusSynchronizer:
    """Read-only observer of agent status documents in a shared directory"""

    def __init__(
        self,
        shared_status_dir: Union[str, Path],
        watch_interval: float = 1.0,
        debounce_ms: int = 100,
        native_watch: bool = True,
        stop_timeout: float = 5.0
    ):
        """
        Args:
            shared_status_dir: Directory agents mirror their status files into
            watch_interval: Seconds between full rescans
            debounce_ms: Grouping window for native change notifications
            native_watch: Disable to rely on rescans only (e.g. network mounts)
            stop_timeout: Seconds to wait for each task before cancelling it
        """
        self.shared_status_dir = Path(shared_status_dir)
        self.watch_interval = watch_interval
        self.debounce_ms = debounce_ms
        self.native_watch = native_watch
        self.stop_timeout = stop_timeout

        self._statuses: dict[str, AgentStatusRecord] = {}
        self._contents: dict[str, str] = {}
        self._listeners: list[StatusListener] = []
        self._stop_event = asyncio.Event()
        self._watch_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._watching = False

    @property
    def is_watching(self) -> bool:
        return self._watching

    async def start(self) -> None:
        """
        Create the directory if needed, scan it, then start both producers.

        Raises:
            StatusIOError: If the shared directory cannot be created
        """
        if self._watching:
            return

        try:
            self.shared_status_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StatusIOError(f"Shared status directory creation failed: {e}") from e

        self._stop_event = asyncio.Event()
        await self.rescan()

        if self.native_watch:
            self._watch_task = asyncio.create_task(self._watch_directory(), name="status-watch")
        self._poll_task = asyncio.create_task(self._poll_directory(), name="status-poll")
        self._watching = True

        logger.info(
            f"[StatusSync] Watching {self.shared_status_dir} "
            f"({len(self._statuses)} agents found, rescan every {self.watch_interval}s)"
        )

    async def stop(self) -> None:
        """Stop both producers and wait for in-flight processing to finish"""
        if not self._watching:
            return

        self._stop_event.set()
        for task in (self._watch_task, self._poll_task):
            if task is None:
                continue
            try:
                await asyncio.wait_for(task, timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"[StatusSync] Task {task.get_name()} did not stop in time, cancelling")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            except Exception as e:
                logger.error(f"[StatusSync] Task {task.get_name()} failed: {e}", exc_info=True)

        self._watch_task = None
        self._poll_task = None
        self._watching = False

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def get_agent_status(self, agent_id: str) -> Optional[AgentStatusRecord]:
        record = self._statuses.get(agent_id)
        return record.model_copy(deep=True) if record else None

    def get_all_agent_statuses(self) -> dict[str, AgentStatusRecord]:
        return {agent_id: record.model_copy(deep=True) for agent_id, record in self._statuses.items()}

    def get_agents_by_status(self, status: AgentStatus) -> list[str]:
        return [agent_id for agent_id, record in self._statuses.items() if record.status == status]

    async def rescan(self) -> None:
        """Process every status file in the directory and drop vanished ones"""
        try:
            paths = sorted(self.shared_status_dir.glob(f"*{STATUS_FILE_SUFFIX}"))
        except OSError as e:
            logger.warning(f"[StatusSync] Rescan of {self.shared_status_dir} failed: {e}")
            return

        seen: set[str] = set()
        for path in paths:
            agent_id = agent_id_from_filename(path.name)
            if agent_id is None:
                continue
            seen.add(agent_id)
            await self._process_file(path)

        for agent_id in set(self._contents) - seen:
            await self._drop(agent_id, self.shared_status_dir / f"{agent_id}{STATUS_FILE_SUFFIX}")

    async def _watch_directory(self) -> None:
        try:
            async for changes in awatch(
                self.shared_status_dir,
                watch_filter=_status_file_filter,
                debounce=self.debounce_ms,
                stop_event=self._stop_event,
                recursive=False,
            ):
                for _change, raw_path in sorted(changes, key=lambda c: c[1]):
                    await self._process_file(Path(raw_path))
        except Exception as e:
            # Rescans keep the snapshot current without native events
            logger.error(f"[StatusSync] Directory watch stopped: {e}", exc_info=True)

    async def _poll_directory(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.watch_interval)
            except asyncio.TimeoutError:
                await self.rescan()

    async def _process_file(self, path: Path) -> None:
        agent_id = agent_id_from_filename(path.name)
        if agent_id is None:
            return

        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            await self._drop(agent_id, path)
            return
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"[StatusSync] Cannot read {path}: {e}")
            return

        if self._contents.get(agent_id) == content:
            return
        # Remember failures too, so a broken file is reported once per change
        self._contents[agent_id] = content

        try:
            record = parse_status_document(content)
        except StatusParseError as e:
            logger.warning(f"[StatusSync] Ignoring malformed status file {path.name}: {e}")
            return

        kind: StatusEventKind = "updated" if agent_id in self._statuses else "created"
        self._statuses[agent_id] = record
        logger.debug(f"[StatusSync] {kind} {agent_id}: {record.status.value}")
        await self._emit(StatusEvent(kind=kind, agent_id=agent_id, path=path))

    async def _drop(self, agent_id: str, path: Path) -> None:
        self._contents.pop(agent_id, None)
        if self._statuses.pop(agent_id, None) is not None:
            logger.info(f"[StatusSync] Status file for {agent_id} removed")
            await self._emit(StatusEvent(kind="removed", agent_id=agent_id, path=path))

    async def _emit(self, event: StatusEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[StatusSync] Listener failed for {event.kind} {event.agent_id}: {e}", exc_info=True)


def _status_file_filter(change: Change, path: str) -> bool:
    return agent_id_from_filename(Path(path).name) is not None
