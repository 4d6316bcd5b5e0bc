"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

import asyncio
from pathlib import Path

from devtrack.ai.chat import ChatService
from devtrack.ai.recorder import AuditRecorder
from devtrack.ai.runner import AgentOptions, AgentResult, AgentRunner
from devtrack.ai.service import AIService
from devtrack.ai.tools.registry import ToolRegistry
from devtrack.config import AppConfig
from devtrack.log import get_logger
from devtrack.storage.conversations import ConversationStore
from devtrack.storage.database import Database
from devtrack.storage.models import AuditRun
from devtrack.storage.run_repo import RunRepository

logger = get_logger(__name__)


class DevTrackApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, ai: AIService | None = None):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.run_repo = RunRepository(self.db)
        self.conversation_store = ConversationStore(config.storage.conversations_dir)
        self.tool_registry = ToolRegistry()
        self.ai = ai or AIService(config.ai, config.providers)
        self.chat = ChatService(
            ai=self.ai,
            tools=self.tool_registry,
            store=self.conversation_store,
            config=config.ai.chat,
            project_name=config.project_name,
        )
        self.runner = AgentRunner(self.ai, self.tool_registry, config.ai.agent)
        self._discovery: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Initialize storage and tools, then kick off model discovery in the background."""
        # 1. Database
        await self.db.initialize()

        # 2. Tools
        self.tool_registry.discover_and_register(Path(self.config.project_root))

        # 3. Model discovery; loops wait on readiness with a timeout
        if self.ai.is_configured():
            self._discovery = asyncio.create_task(self.ai.discover())
        else:
            logger.warning("no_providers_configured")

        logger.info(
            "devtrack_started",
            project=self.config.project_name,
            tools=len(self.tool_registry.names()),
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        if self._discovery is not None and not self._discovery.done():
            self._discovery.cancel()
            try:
                await self._discovery
            except asyncio.CancelledError:
                pass
        await self.db.close()
        logger.info("devtrack_stopped")

    async def run_agent(
        self,
        system_prompt: str,
        user_message: str,
        options: AgentOptions | None = None,
        record_as: str | None = None,
        trigger: str = "manual",
    ) -> tuple[AgentResult, AuditRun | None]:
        """Run a headless task, optionally recording it to the run history."""
        options = options or AgentOptions()
        if record_as is None:
            return await self.runner.run(system_prompt, user_message, options), None

        recorder = AuditRecorder(record_as, trigger=trigger, repository=self.run_repo)
        options.recorder = recorder
        try:
            result = await self.runner.run(system_prompt, user_message, options)
        except Exception as e:
            await recorder.fail(str(e))
            raise
        run = await recorder.finalize(result.content, result.iterations)
        return result, run
