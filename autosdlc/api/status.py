"""
Agent status API endpoints, served from the coordinator's StatusSynchronizer.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from autosdlc.models.agent import AgentStatus
from autosdlc.services.status_synchronizer import StatusSynchronizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agents", tags=["agents"])


def _synchronizer(request: Request) -> StatusSynchronizer:
    return request.app.state.status_synchronizer


@router.get("/status")
async def list_agent_statuses(request: Request, status: Optional[AgentStatus] = None):
    """
    Latest parsed status of every agent, keyed by agent id.

    Pass ?status=BUSY (or IDLE/BLOCKED/ERROR) to filter.
    """
    synchronizer = _synchronizer(request)
    statuses = synchronizer.get_all_agent_statuses()
    if status is not None:
        wanted = set(synchronizer.get_agents_by_status(status))
        statuses = {agent_id: record for agent_id, record in statuses.items() if agent_id in wanted}

    return {agent_id: record.model_dump(by_alias=True, mode="json") for agent_id, record in statuses.items()}


@router.get("/{agent_id}/status")
async def get_agent_status(agent_id: str, request: Request):
    record = _synchronizer(request).get_agent_status(agent_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No status for agent {agent_id}")
    return record.model_dump(by_alias=True, mode="json")
