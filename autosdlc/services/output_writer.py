"""
Agent Output Writer

Publishes one agent's live status as a markdown document: a private copy
in the agent workspace and a mirror in the shared status directory that
observers watch. Publication is best-effort; IO failures are logged and
never propagate to the owning agent.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional, Union

from autosdlc.models.agent import AgentStatus, AgentStatusRecord, AgentType
from autosdlc.services.status_document import render_status_document
from autosdlc.utils.timestamps import utc_timestamp

logger = logging.getLogger(__name__)

OUTPUT_FILE_NAME = "Agent_Output.md"
STATUS_FILE_SUFFIX = "-status.md"


def status_file_name(agent_name: str) -> str:
    return f"{agent_name}{STATUS_FILE_SUFFIX}"


class AgentOutputWriter:
    """Renders and mirrors the status document of a single agent"""

    def __init__(
        self,
        agent_type: AgentType,
        agent_name: str,
        workspace: Union[str, Path],
        shared_status_dir: Union[str, Path],
        update_interval: float = 5.0
    ):
        if update_interval <= 0:
            raise ValueError("update_interval must be positive")

        self.agent_type = agent_type
        self.agent_name = agent_name
        self.workspace = Path(workspace)
        self.shared_status_dir = Path(shared_status_dir)
        self.update_interval = update_interval

        self._running = False
        self._timer: Optional[asyncio.Task] = None
        self._current = AgentStatusRecord(
            agent_type=agent_type,
            status=AgentStatus.IDLE,
            last_updated=utc_timestamp(),
        )
        # Uptime is reported as the last explicit value plus time elapsed since
        self._uptime_base = 0
        self._uptime_anchor = time.monotonic()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def output_file(self) -> Path:
        return self.workspace / OUTPUT_FILE_NAME

    @property
    def shared_file(self) -> Path:
        return self.shared_status_dir / status_file_name(self.agent_name)

    async def start(self) -> None:
        """Create directories, write the initial document and start periodic refresh"""
        if self._running:
            return

        self._ensure_directory(self.workspace)
        self._ensure_directory(self.shared_status_dir)

        self._uptime_anchor = time.monotonic()
        self._publish()

        self._timer = asyncio.create_task(
            self._periodic_updates(), name=f"status-writer-{self.agent_name}"
        )
        self._running = True
        logger.info(f"[OutputWriter] Publishing status for {self.agent_name} to {self.shared_file}")

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._timer:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

    async def update_status(self, record: AgentStatusRecord) -> None:
        """Replace the current status and publish it immediately if running"""
        self._current = record.model_copy(deep=True, update={"last_updated": utc_timestamp()})
        self._uptime_base = record.metrics.uptime_seconds
        self._uptime_anchor = time.monotonic()

        if self._running:
            self._publish()

    def get_current_status(self) -> AgentStatusRecord:
        return self._current.model_copy(deep=True)

    def flush(self) -> None:
        """Write the current status now, whether or not the writer is running"""
        self._ensure_directory(self.workspace)
        self._publish()

    def remove_shared_status(self) -> bool:
        """
        Delete this agent's mirrored status file.

        Status files outlive their agent process; this is the explicit
        cleanup hook for operators and orderly shutdowns.

        Returns:
            True if a file was removed
        """
        try:
            self.shared_file.unlink()
            logger.info(f"[OutputWriter] Removed shared status file {self.shared_file}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"[OutputWriter] Failed to remove {self.shared_file}: {e}")
            return False

    async def _periodic_updates(self) -> None:
        # Refresh even when nothing changed so Last Updated stays fresh
        while True:
            await asyncio.sleep(self.update_interval)
            self._tick()
            self._publish()

    def _tick(self) -> None:
        elapsed = int(time.monotonic() - self._uptime_anchor)
        self._current.last_updated = utc_timestamp()
        self._current.metrics.uptime_seconds = self._uptime_base + elapsed

    def _publish(self) -> None:
        content = render_status_document(self._current)
        self._write(self.output_file, content)

        self._ensure_directory(self.shared_status_dir)
        self._write(self.shared_file, content)

    def _write(self, path: Path, content: str) -> None:
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.error(f"[OutputWriter] Failed to write {path}: {e}")

    def _ensure_directory(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"[OutputWriter] Failed to create directory {path}: {e}")
