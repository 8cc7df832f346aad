import asyncio
import random

import pytest

from hex_mosaic.client.mosaic import MosaicManager, MosaicState
from hex_mosaic.shared.errors import InvalidDirection, NoImage, ServiceError
from hex_mosaic.shared.hex_math import Hex, hex_from_key, hex_key, hex_neighbors

from conftest import FakeService


def keys(*coords):
    return {hex_key(c) for c in coords}


def seeded(service, layout):
    manager = MosaicManager(service, layout, prompt="p")
    assert asyncio.run(manager.seed(Hex(0, 0), "p")) is True
    return manager


def test_fresh_state():
    state = MosaicState()
    assert state.generated == set()
    assert state.selected is None
    assert state.invariant_violations() == []


def test_seed_scenario(service, layout):
    manager = seeded(service, layout)
    state = manager.state
    assert state.generated == keys(Hex(0, 0))
    assert state.expandable == keys(*hex_neighbors(Hex(0, 0)))
    assert manager.selected == Hex(0, 0)
    assert state.loading == set()
    assert state.tiles[hex_key(Hex(0, 0))].rotation == 0
    assert service.calls == [("p", [])]
    assert state.invariant_violations() == []


def test_seed_twice_is_noop(service, layout):
    manager = seeded(service, layout)
    assert asyncio.run(manager.seed(Hex(5, 5), "other")) is False
    assert len(service.calls) == 1
    assert manager.state.generated == keys(Hex(0, 0))


def test_seed_while_seed_pending_is_noop(payload, layout):
    service = FakeService(payload, gated=True)
    manager = MosaicManager(service, layout)

    async def scenario():
        first = asyncio.create_task(manager.seed(Hex(0, 0)))
        await asyncio.sleep(0)
        assert manager.state.loading == keys(Hex(0, 0))
        assert manager.state.invariant_violations() == []
        assert await manager.seed(Hex(3, 3)) is False
        service.gates[0].set()
        return await first

    assert asyncio.run(scenario()) is True
    assert len(service.calls) == 1


def test_seed_failure_leaves_mosaic_empty(service, layout):
    service.errors = [NoImage()]
    manager = MosaicManager(service, layout)
    with pytest.raises(NoImage):
        asyncio.run(manager.seed())
    assert manager.state.generated == set()
    assert manager.state.loading == set()
    # and a new seed is allowed
    assert asyncio.run(manager.seed()) is True


def test_extend_east_scenario(service, layout):
    manager = seeded(service, layout)
    assert manager.select(Hex(0, 0)) is True
    assert asyncio.run(manager.extend(Hex(1, 0))) is True

    state = manager.state
    assert state.generated == keys(Hex(0, 0), Hex(1, 0))
    assert manager.selected == Hex(1, 0)
    assert manager.tile(Hex(1, 0)).rotation == 0
    expected = (set(hex_neighbors(Hex(0, 0))) | set(hex_neighbors(Hex(1, 0)))) - {Hex(0, 0), Hex(1, 0)}
    assert state.expandable == keys(*expected)
    assert len(state.expandable) == 8
    assert state.invariant_violations() == []

    prompt, contexts = service.calls[-1]
    assert prompt.startswith("p. This is a hex tile.")
    assert "extends this tile to the right" in prompt
    assert "(125x144 pixels)" in prompt
    assert len(contexts) == 1


def test_extend_northeast_stores_rotation(service, layout):
    manager = seeded(service, layout)
    asyncio.run(manager.extend(Hex(1, -1)))
    assert manager.tile(Hex(1, -1)).rotation == 60
    asyncio.run(manager.extend(Hex(1, -2)))
    assert manager.tile(Hex(1, -2)).rotation == 120


def test_extend_failure_keeps_target_retryable(service, layout):
    manager = seeded(service, layout)
    service.errors = [ServiceError("upstream down")]
    with pytest.raises(ServiceError):
        asyncio.run(manager.extend(Hex(1, 0)))

    state = manager.state
    key = hex_key(Hex(1, 0))
    assert key not in state.generated
    assert key not in state.loading
    assert key in state.expandable
    assert manager.selected == Hex(0, 0)
    assert state.invariant_violations() == []

    assert asyncio.run(manager.extend(Hex(1, 0))) is True
    assert key in state.generated


def test_concurrent_extend_same_target_calls_service_once(payload, layout):
    service = FakeService(payload)
    manager = seeded(service, layout)
    service.gated = True

    async def scenario():
        a = asyncio.create_task(manager.extend(Hex(1, 0)))
        b = asyncio.create_task(manager.extend(Hex(1, 0)))
        await asyncio.sleep(0)
        for gate in service.gates:
            gate.set()
        return await asyncio.gather(a, b)

    results = asyncio.run(scenario())
    assert sorted(results) == [False, True]
    assert len(service.calls) == 2 # seed + one extend
    assert manager.state.invariant_violations() == []


def test_out_of_order_completions_keep_invariants(payload, layout):
    service = FakeService(payload)
    manager = seeded(service, layout)
    service.gated = True
    service.errors = [None, ServiceError("flaky")]

    async def scenario():
        east = asyncio.create_task(manager.extend(Hex(1, 0)))
        west = asyncio.create_task(manager.extend(Hex(-1, 0)))
        await asyncio.sleep(0)
        assert manager.state.loading == keys(Hex(1, 0), Hex(-1, 0))
        assert manager.state.invariant_violations() == []

        # west resolves first, then east fails
        service.gates[1].set()
        assert await west is True
        assert manager.state.loading == keys(Hex(1, 0))
        assert manager.state.invariant_violations() == []

        service.gates[0].set()
        with pytest.raises(ServiceError):
            await east

    asyncio.run(scenario())
    state = manager.state
    assert state.generated == keys(Hex(0, 0), Hex(-1, 0))
    assert hex_key(Hex(1, 0)) in state.expandable
    assert state.loading == set()
    assert manager.selected == Hex(-1, 0)
    assert state.invariant_violations() == []


def test_extend_preconditions_are_silent(service, layout):
    manager = MosaicManager(service, layout)
    assert asyncio.run(manager.extend(Hex(1, 0))) is False

    manager = seeded(service, layout)
    assert asyncio.run(manager.extend(Hex(3, 3))) is False # not on the frontier
    assert asyncio.run(manager.extend(Hex(0, 0))) is False # already generated
    manager.state.selected = None
    assert asyncio.run(manager.extend(Hex(1, 0))) is False
    assert len(service.calls) == 1


def test_extend_from_non_adjacent_selection_raises(service, layout):
    manager = seeded(service, layout)
    asyncio.run(manager.extend(Hex(1, 0)))
    manager.select(Hex(0, 0))
    with pytest.raises(InvalidDirection):
        asyncio.run(manager.extend(Hex(2, 0)))
    assert manager.state.loading == set()
    assert len(service.calls) == 2


def test_select_only_generated(service, layout):
    manager = seeded(service, layout)
    assert manager.select(Hex(1, 0)) is False
    assert manager.selected == Hex(0, 0)


def test_clear(service, layout):
    manager = seeded(service, layout)
    manager.clear()
    state = manager.state
    assert state.tiles == {}
    assert state.generated == set()
    assert state.expandable == set()
    assert state.loading == set()
    assert state.selected is None
    assert asyncio.run(manager.seed()) is True


def test_result_after_clear_is_dropped(payload, layout):
    service = FakeService(payload)
    manager = seeded(service, layout)
    service.gated = True

    async def scenario():
        task = asyncio.create_task(manager.extend(Hex(1, 0)))
        await asyncio.sleep(0)
        manager.clear()
        service.gates[0].set()
        await task

    asyncio.run(scenario())
    assert manager.state.generated == set()
    assert manager.state.loading == set()
    assert manager.state.invariant_violations() == []


def test_listener_called_on_transitions(service, layout):
    calls = []
    manager = MosaicManager(service, layout, listener=lambda: calls.append(len(manager.state.loading)))
    asyncio.run(manager.seed())
    assert calls == [1, 0]
    manager.select(Hex(0, 0))
    manager.clear()
    assert len(calls) == 4


def test_click_dispatch(service, layout):
    manager = seeded(service, layout)

    # frontier hex next to the selection: extend
    hit = asyncio.run(manager.click(*layout.axial_to_pixel(Hex(0, 1))))
    assert hit == Hex(0, 1)
    assert manager.selected == Hex(0, 1)

    # generated hex: select
    hit = asyncio.run(manager.click(*layout.axial_to_pixel(Hex(0, 0))))
    assert hit == Hex(0, 0)
    assert manager.selected == Hex(0, 0)

    # frontier hex not next to the selection: nothing happens
    calls = len(service.calls)
    hit = asyncio.run(manager.click(*layout.axial_to_pixel(Hex(1, 1))))
    assert hit == Hex(1, 1)
    assert len(service.calls) == calls
    assert manager.selected == Hex(0, 0)


def test_click_outside_grid_content(service, layout):
    manager = seeded(service, layout)
    hit = asyncio.run(manager.click(*layout.axial_to_pixel(Hex(4, 4))))
    assert hit == Hex(4, 4)
    assert len(service.calls) == 1


def test_randomized_operations_keep_invariants(service, layout):
    rng = random.Random(1234)
    manager = MosaicManager(service, layout)

    async def step():
        state = manager.state
        roll = rng.random()
        if roll < 0.05:
            manager.clear()
        elif not state.generated:
            await manager.seed()
        elif roll < 0.25:
            manager.select(hex_from_key(rng.choice(sorted(state.generated))))
        else:
            targets = [n for n in hex_neighbors(manager.selected) if hex_key(n) in state.expandable]
            if targets:
                await manager.extend(rng.choice(targets))

    async def scenario():
        for _ in range(150):
            if rng.random() < 0.3:
                service.errors = [ServiceError("random failure")]
            try:
                await step()
            except ServiceError:
                pass
            service.errors = []
            state = manager.state
            assert not (state.generated & state.expandable)
            assert state.invariant_violations() == []

    asyncio.run(scenario())
