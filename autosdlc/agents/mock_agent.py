import asyncio
import random
from typing import Any, Callable, Optional

from autosdlc.agents.base import BaseAgent
from autosdlc.models.agent import AgentStatus, AgentType

# Tool exposed by each agent type, with its parameter schema
MOCK_TOOLS: dict[AgentType, dict[str, Any]] = {
    AgentType.CUSTOMER: {
        "name": "validateRequirements",
        "description": "Validate business requirements and acceptance criteria",
        "parameters": {
            "requirements": {"type": "array", "required": True, "description": "Requirement statements"},
        },
        "tags": ["requirements"],
    },
    AgentType.PM: {
        "name": "createUserStory",
        "description": "Turn a requirement into a sized user story",
        "parameters": {
            "title": {"type": "string", "required": True},
            "description": {"type": "string"},
            "priority": {"type": "string", "enum": ["low", "medium", "high"]},
        },
        "tags": ["planning"],
    },
    AgentType.CODER: {
        "name": "implementFeature",
        "description": "Implement a feature against its tests",
        "parameters": {
            "feature": {"type": "string", "required": True},
            "testFiles": {"type": "array"},
        },
        "tags": ["development"],
    },
    AgentType.REVIEWER: {
        "name": "reviewCode",
        "description": "Review a pull request and score its quality",
        "parameters": {
            "pullRequest": {"type": "number", "required": True, "min": 1},
            "checkList": {"type": "array"},
        },
        "tags": ["review", "quality"],
    },
    AgentType.TESTER: {
        "name": "runTests",
        "description": "Execute the test suite and report coverage",
        "parameters": {
            "testPattern": {"type": "string"},
            "coverage": {"type": "boolean"},
        },
        "tags": ["testing", "quality"],
    },
}


class MockAgent(BaseAgent):
    """Agent whose domain tools are random-number simulations"""

    def __init__(
        self,
        agent_type: AgentType,
        agent_id: Optional[str] = None,
        work_delay: float = 0.1,
        rng: Optional[random.Random] = None,
        **kwargs
    ):
        super().__init__(agent_id or f"{agent_type.value}-agent", agent_type, **kwargs)
        self.work_delay = work_delay
        self.rng = rng or random.Random()

    def register_tools(self) -> None:
        spec = MOCK_TOOLS[self.agent_type]
        simulate = {
            AgentType.CUSTOMER: self._validate_requirements,
            AgentType.PM: self._create_user_story,
            AgentType.CODER: self._implement_feature,
            AgentType.REVIEWER: self._review_code,
            AgentType.TESTER: self._run_tests,
        }[self.agent_type]

        async def handler(params: dict[str, Any]) -> dict[str, Any]:
            return await self._simulate(spec["name"], params, simulate)

        self.server.register_tool(
            spec["name"],
            handler,
            {k: v for k, v in spec.items() if k != "name"},
        )

    async def _simulate(
        self,
        tool_name: str,
        params: dict[str, Any],
        simulate: Callable[[dict[str, Any]], dict[str, Any]]
    ) -> dict[str, Any]:
        await self.update_status(AgentStatus.BUSY, task=tool_name, progress=0)
        await asyncio.sleep(self.work_delay)
        await self.update_status(AgentStatus.BUSY, progress=50)

        result = simulate(params)
        await self.log_action(tool_name, "success")
        await self.complete_task()
        return result

    def _validate_requirements(self, params: dict[str, Any]) -> dict[str, Any]:
        requirements = params.get("requirements", [])
        score = round(self.rng.uniform(0.5, 1.0), 2)
        return {
            "valid": score >= 0.7,
            "score": score,
            "requirementCount": len(requirements),
            "feedback": [f"Clarify acceptance criteria for: {r}" for r in requirements if self.rng.random() < 0.3],
        }

    def _create_user_story(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "storyId": f"US-{self.rng.randint(100, 999)}",
            "title": params["title"],
            "priority": params.get("priority", "medium"),
            "storyPoints": self.rng.choice([1, 2, 3, 5, 8]),
        }

    def _implement_feature(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "feature": params["feature"],
            "filesChanged": self.rng.randint(1, 5),
            "linesAdded": self.rng.randint(10, 200),
            "testsPassing": True,
        }

    def _review_code(self, params: dict[str, Any]) -> dict[str, Any]:
        score = round(self.rng.uniform(0.4, 1.0), 2)
        return {
            "pullRequest": params["pullRequest"],
            "approved": score >= 0.6,
            "score": score,
            "issues": self.rng.randint(0, 5),
        }

    def _run_tests(self, params: dict[str, Any]) -> dict[str, Any]:
        total = self.rng.randint(20, 120)
        failed = self.rng.randint(0, 3)
        result = {
            "testPattern": params.get("testPattern", "**/*"),
            "total": total,
            "passed": total - failed,
            "failed": failed,
        }
        if params.get("coverage"):
            result["coverage"] = round(self.rng.uniform(70.0, 98.0), 1)
        return result
