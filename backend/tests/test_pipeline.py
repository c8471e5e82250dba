import asyncio

import httpx

from pipeline import BulkPipeline
from session_state import MemorySnapshotStore, PlacementSelection, SessionState
from workflow import WorkflowController
from fakes import FakeApi, FakeScheduler, poster_catalog


def saved_pricing_session():
    state = SessionState(
        current_step=5,
        completed_steps={2, 3, 4},
        selected_products={"A"},
        product_designs={"A": [PlacementSelection("front", 3600, 4800, "dtg", 300)]},
        generated_images={"A_front": "https://images.test/A_front.png"},
    )
    return MemorySnapshotStore(state.to_json())


def test_restore_survives_unreachable_pricing_service():
    controller = WorkflowController(saved_pricing_session())
    controller.register_catalog(poster_catalog())
    api = FakeApi()
    api.pricing = lambda products: httpx.ConnectError("pricing service down")
    pipeline = BulkPipeline(controller, api, scheduler=FakeScheduler())

    state = asyncio.run(pipeline.restore())

    assert state.current_step == 5
    assert state.generated_images == {"A_front": "https://images.test/A_front.png"}
    assert len(api.called("price_products")) == 1
    assert pipeline.publisher.cards == {}


def test_restore_reprices_saved_pricing_session():
    controller = WorkflowController(saved_pricing_session())
    controller.register_catalog(poster_catalog())
    pipeline = BulkPipeline(controller, FakeApi(), scheduler=FakeScheduler())

    asyncio.run(pipeline.restore())

    assert list(pipeline.publisher.cards) == ["A_front"]
