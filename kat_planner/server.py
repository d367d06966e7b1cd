"""MCP transport for the planning workflow.

Registers the planner tools on a FastMCP server and ties the session reaper
to the server lifespan. Tool handlers are thin: they assemble a payload and
hand it to ``WorkflowOrchestrator`` on a worker thread, since every call
writes the session file synchronously.

Tools:
- health_check: server and storage status
- start_interactive_spec: question, refine, document_review, final_approval
- start_development: enter development after final approval
- session_status: read-only session snapshot
- validate_workflow: check a planned sequence of stage calls
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from kat_planner import __version__
from kat_planner.config import PlannerConfig
from kat_planner.session.reaper import SessionReaper
from kat_planner.session.session_store import SessionStore
from kat_planner.workflow.orchestrator import WorkflowOrchestrator
from kat_planner.workflow.stage_registry import DEVELOPMENT_TOOL

logger = logging.getLogger(__name__)

SERVER_INSTRUCTIONS = """\
kat-planner guides a project idea through a fixed planning workflow:
question -> refine -> document_review -> final_approval -> development.

Every response carries nextAction and nextCall. Make exactly the call named
in nextCall and nothing else. Stages cannot be skipped or repeated; an error
response includes a recovery object with a concrete exampleCall.
"""


def _payload(**fields: Any) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def create_server(
    orchestrator: WorkflowOrchestrator,
    reaper: SessionReaper | None = None,
    name: str = "kat-planner",
) -> FastMCP:
    """Create the MCP server with all tools registered.

    Args:
        orchestrator: Orchestrator backing every tool
        reaper: Optional reaper started and stopped with the server
        name: Server name advertised to clients

    Returns:
        FastMCP server instance
    """

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        if reaper is not None:
            await reaper.start()
        try:
            yield
        finally:
            if reaper is not None:
                await reaper.stop()

    mcp = FastMCP(name, instructions=SERVER_INSTRUCTIONS, lifespan=lifespan)

    # ─────────────────────────────────────────────────────────────────────
    # Register Tools
    # ─────────────────────────────────────────────────────────────────────

    @mcp.tool()
    async def health_check() -> dict[str, Any]:
        """Report server health, live session count and session storage location."""
        status = await asyncio.to_thread(orchestrator.health)
        status["server"] = name
        status["version"] = __version__
        if reaper is not None:
            status["reaper"] = reaper.get_status()
        return status

    @mcp.tool()
    async def start_interactive_spec(
        mode: str = "question",
        sessionId: str | None = None,
        subject: str | None = None,
        userIdea: str | None = None,
        answers: dict[str, Any] | None = None,
        userAnswers: dict[str, Any] | None = None,
        revisionRequest: str | None = None,
        approvalToken: str | None = None,
        explicitApproval: str | None = None,
    ) -> dict[str, Any]:
        """Run one step of the interactive planning workflow.

        Modes, in order:
        - question: start a session for an idea (subject)
        - refine: submit answers to the clarifying questions (sessionId, answers)
        - document_review: generate documents for review (sessionId);
          add revisionRequest to send the specification back for revision
        - final_approval: record the user's explicit approval (sessionId, approvalToken)

        Follow nextCall in every response. Do not skip or repeat steps.
        """
        payload = _payload(
            sessionId=sessionId,
            subject=subject,
            userIdea=userIdea,
            answers=answers,
            userAnswers=userAnswers,
            revisionRequest=revisionRequest,
            approvalToken=approvalToken,
            explicitApproval=explicitApproval,
        )
        return await asyncio.to_thread(orchestrator.invoke, mode, payload)

    @mcp.tool(name=DEVELOPMENT_TOOL)
    async def start_development(
        sessionId: str,
        developmentPlan: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Start development for a session that has received final approval.

        Call only after start_interactive_spec returned final_approval. Optional
        developmentPlan: implementationSteps, milestones, estimatedTimeline.
        """
        payload = _payload(sessionId=sessionId, developmentPlan=developmentPlan)
        return await asyncio.to_thread(orchestrator.invoke, "development", payload)

    @mcp.tool()
    async def session_status(sessionId: str) -> dict[str, Any]:
        """Show a session's current stage and its legal next calls without changing it."""
        return await asyncio.to_thread(orchestrator.session_status, sessionId)

    @mcp.tool()
    async def validate_workflow(stages: list[str]) -> dict[str, Any]:
        """Check whether a planned sequence of stage calls follows the workflow."""
        return orchestrator.validate_workflow(stages)

    return mcp


def build_components(config: PlannerConfig) -> tuple[WorkflowOrchestrator, SessionReaper]:
    """Wire the store, orchestrator and reaper from configuration."""
    store = SessionStore.from_config(config)
    orchestrator = WorkflowOrchestrator(store)
    reaper = SessionReaper(store, interval_seconds=config.reap_interval_seconds)
    return orchestrator, reaper


def run_server(config: PlannerConfig, transport: str = "stdio") -> None:
    """Run the MCP server until the client disconnects."""
    orchestrator, reaper = build_components(config)
    mcp = create_server(orchestrator, reaper, name=config.server_name)
    logger.info(
        f"kat-planner {__version__} starting: sessions={config.session_file}, "
        f"loaded={orchestrator.store.count()}"
    )
    mcp.run(transport=transport)
