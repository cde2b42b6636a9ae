"""
Run one agent process until interrupted.

    python -m autosdlc.agents --type coder --port 3702
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from autosdlc.agents.mock_agent import MockAgent
from autosdlc.config.logging_config import setup_logging
from autosdlc.models.agent import AgentType
from autosdlc.settings import settings

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an AutoSDLC agent")
    parser.add_argument("--type", required=True, choices=[t.value for t in AgentType], help="Agent type")
    parser.add_argument("--port", type=int, required=True, help="MCP listener port")
    parser.add_argument("--id", dest="agent_id", help="Agent id (default: <type>-agent)")
    parser.add_argument("--host", default=settings.agent_host)
    parser.add_argument("--workspace", default=None, help="Workspace directory (default: <workspace_root>/<id>)")
    parser.add_argument("--shared-dir", default=settings.shared_status_dir)
    parser.add_argument("--coordinator-url", default=settings.coordinator_url or None)
    parser.add_argument("--log-level", default=settings.log_level)
    return parser.parse_args(argv)


async def run_agent(args: argparse.Namespace) -> None:
    agent_type = AgentType(args.type)
    agent_id = args.agent_id or f"{agent_type.value}-agent"

    agent = MockAgent(
        agent_type,
        agent_id=agent_id,
        workspace_dir=args.workspace or Path(settings.workspace_root) / agent_id,
        shared_status_dir=args.shared_dir,
        port=args.port,
        host=args.host,
        coordinator_url=args.coordinator_url,
        update_interval=settings.status_update_interval,
        request_timeout=settings.request_timeout,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await agent.start()
    try:
        await stop_event.wait()
    finally:
        logger.info(f"Shutting down {agent_id}...")
        await agent.stop()


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging(log_level=args.log_level, process_name=args.agent_id or f"{args.type}-agent")
    asyncio.run(run_agent(args))


if __name__ == "__main__":
    main()
