"""Wires the bulk flow together around one WorkflowController."""

import asyncio
import logging
from typing import Optional

import httpx

from config import STEP_GENERATION, STEP_PRICING
from fetcher import FetchError
from generation import DesignBrief, GenerationRunner
from mockups import MockupPoller, PendingMockups
from publisher import MarketplaceCredential, PricingError, PublishOrchestrator
from workflow import WorkflowController

logger = logging.getLogger(__name__)


class BulkPipeline:
    """Single owner of the session: every stage reads and writes state through the controller."""

    def __init__(
        self,
        controller: WorkflowController,
        api,
        runner: Optional[GenerationRunner] = None,
        publisher: Optional[PublishOrchestrator] = None,
        scheduler=None,
        credential: Optional[MarketplaceCredential] = None,
    ):
        self.controller = controller
        self.api = api
        self.runner = runner or GenerationRunner(controller, api)
        if publisher is None:
            pending = PendingMockups()
            publisher = PublishOrchestrator(
                controller,
                api,
                pending=pending,
                poller=MockupPoller(api, pending, scheduler=scheduler),
                credential=credential,
            )
        self.publisher = publisher
        self._task: Optional[asyncio.Task] = None

        controller.register_initializer(STEP_GENERATION, self._enter_generation)
        controller.register_initializer(STEP_PRICING, self.publisher.prepare)

    async def _enter_generation(self):
        self.runner.prepare()

    async def restore(self):
        """Load the saved session; a failed step re-entry leaves the restored state in place."""
        try:
            await self.controller.load()
        except (FetchError, PricingError, httpx.HTTPError) as e:
            logger.warning("Session restored but step re-entry failed: %s", e)
        return self.controller.state

    @property
    def generating(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_generation(self, brief: DesignBrief) -> asyncio.Task:
        """Run generation in the background; only one run at a time."""
        if self.generating:
            raise RuntimeError("Generation already running")
        self._task = asyncio.create_task(self._run(brief))
        return self._task

    async def _run(self, brief: DesignBrief):
        try:
            return await self.runner.run_all(brief)
        except Exception as e:
            logger.error("Generation run crashed: %s", e, exc_info=True)
            self.controller.events.emit("generation_failed", error=str(e))
            raise

    def reset(self):
        """Finish the bulk process and start over at product selection."""
        self.runner.clear()
        self.publisher.clear()
        self.controller.reset()

    def snapshot(self) -> dict:
        state = self.controller.state.to_snapshot()
        state["generating"] = self.generating
        state["jobs"] = self.runner.summary()
        state["cards"] = len(self.publisher.cards)
        state["pending_mockups"] = len(self.publisher.pending)
        return state

    def shutdown(self):
        self.publisher.poller.shutdown()
