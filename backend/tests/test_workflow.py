import asyncio

import pytest

from session_state import (
    JsonSnapshotStore,
    MemorySnapshotStore,
    PlacementSelection,
    ProductContent,
    SessionState,
    SnapshotError,
)
from workflow import StepValidationError, WorkflowController
from fakes import make_controller, poster_catalog


@pytest.mark.parametrize("step", [0, 1, 6, 99])
def test_out_of_range_step_is_ignored(step):
    store = MemorySnapshotStore()
    controller = WorkflowController(store)

    assert asyncio.run(controller.navigate_to_step(step)) is False
    assert controller.state == SessionState()
    assert store.saves == 0


def test_placements_step_requires_a_selected_product():
    controller = WorkflowController(MemorySnapshotStore())

    with pytest.raises(StepValidationError, match="select at least one product"):
        asyncio.run(controller.navigate_to_step(3))

    assert controller.state.current_step == 2


def test_generation_step_lists_products_missing_placements():
    controller = make_controller(catalog=poster_catalog())
    controller.select_products(["A", "B", "C"])
    controller.set_placements("A", [{"position": "front", "width": 100, "height": 100}])
    asyncio.run(controller.navigate_to_step(3))

    with pytest.raises(StepValidationError) as exc:
        asyncio.run(controller.navigate_to_step(4))

    assert exc.value.missing == ["B", "C"]
    assert "Mug" in str(exc.value)
    assert "Product ID C" in str(exc.value)
    assert controller.state.current_step == 3


def test_forward_move_marks_previous_step_and_runs_initializer():
    controller = make_controller({"A": [("front", 100, 100)]})
    entered = []

    async def init_generation():
        entered.append(controller.state.current_step)

    controller.register_initializer(4, init_generation)
    asyncio.run(controller.navigate_to_step(3))
    asyncio.run(controller.navigate_to_step(4))

    assert controller.state.current_step == 4
    assert controller.state.completed_steps == {2, 3}
    assert entered == [4]


def test_backward_move_skips_guards():
    controller = make_controller({"A": [("front", 100, 100)]})
    asyncio.run(controller.navigate_to_step(4))
    controller.toggle_product("A", False)

    assert asyncio.run(controller.navigate_to_step(2)) is True
    assert controller.state.current_step == 2


def test_every_mutation_is_persisted():
    store = MemorySnapshotStore()
    controller = WorkflowController(store)
    controller.select_products(["A"])
    controller.set_placements("A", [{"position": "front", "width": 10, "height": 20}])

    restored = SessionState.from_json(store.raw)
    assert restored.selected_products == {"A"}
    assert restored.product_designs["A"][0].size_label == "10x20"


def test_deselecting_drops_placements():
    controller = make_controller({"A": [("front", 100, 100)], "B": [("front", 50, 50)]})
    controller.select_products(["B"])

    assert set(controller.state.product_designs) == {"B"}


def test_technique_falls_back_to_catalog_then_default():
    controller = make_controller(catalog=poster_catalog())
    controller.select_products(["A", "B"])
    a = controller.set_placements("A", [{"position": "front", "width": 10, "height": 10}])
    b = controller.set_placements("B", [
        {"position": "front", "width": 10, "height": 10},
        {"position": "back", "width": 10, "height": 10, "technique": "embroidery"},
        {"position": "front", "width": 99, "height": 99},
    ])

    assert a[0].technique == "dtg"
    assert [p.technique for p in b] == ["sublimation", "embroidery"]


def test_snapshot_round_trip_preserves_state():
    state = SessionState(
        current_step=5,
        completed_steps={2, 3, 4},
        selected_products={"B", "A"},
        product_designs={"A": [PlacementSelection("front", 3600, 4800, "dtg", 300)]},
        product_content={"A": ProductContent(title="Café Noël", tags=["x"])},
        generated_images={"A_front": "https://images.test/1.png"},
        created_products=[{"card_id": "A_front"}],
        store_id="store-1",
    )

    snapshot = state.to_snapshot()
    assert snapshot["selected_products"] == ["A", "B"]
    assert snapshot["generated_images"] == [["A_front", "https://images.test/1.png"]]
    assert SessionState.from_json(state.to_json()) == state


@pytest.mark.parametrize("raw", [
    "{not json",
    "[]",
    '{"current_step": 9}',
    '{"selected_products": "A"}',
    '{"product_designs": [["A", [{"position": "front", "width": -1, "height": 5}]]]}',
])
def test_corrupted_snapshot_raises(raw):
    with pytest.raises(SnapshotError):
        SessionState.from_json(raw)


def test_load_discards_corrupted_snapshot():
    store = MemorySnapshotStore("{broken")
    controller = WorkflowController(store)

    state = asyncio.run(controller.load())

    assert state == SessionState()
    assert store.raw is None


def test_load_discards_undecodable_snapshot_file(tmp_path):
    store = JsonSnapshotStore(tmp_path)
    store.path.write_bytes(b'{"current_step": 3, "x": "\xff\xfe"}')
    controller = WorkflowController(store)

    state = asyncio.run(controller.load())

    assert state == SessionState()
    assert store.load() is None


def test_load_restores_and_reenters_current_step():
    saved = SessionState(current_step=4, selected_products={"A"})
    controller = WorkflowController(MemorySnapshotStore(saved.to_json()))
    entered = []

    async def init_generation():
        entered.append(True)

    controller.register_initializer(4, init_generation)
    asyncio.run(controller.load())

    assert controller.state.current_step == 4
    assert entered == [True]


def test_reset_returns_to_product_selection():
    controller = make_controller({"A": [("front", 100, 100)]})
    asyncio.run(controller.navigate_to_step(4))

    controller.reset()

    assert controller.state == SessionState()
    assert SessionState.from_json(controller.store.raw) == SessionState()


def test_json_store_round_trip(tmp_path):
    store = JsonSnapshotStore(tmp_path, "shop/../1")
    controller = WorkflowController(store)
    controller.select_products(["A"])

    assert store.path.parent == tmp_path
    assert SessionState.from_json(store.load()).selected_products == {"A"}

    store.clear()
    assert store.load() is None
