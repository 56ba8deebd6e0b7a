##########################################################################################
#
# Script name: test_request_queue.py
#
# Description: Single-flight scheduling, spacing, duplicates, expiry and queue bounds.
#
##########################################################################################

import asyncio
from typing import Any, Dict, List

import pytest

from curator.services.request_queue import (
    DuplicateRequestError,
    GenerationScheduler,
    QueueFullError,
    RequestTimeoutError,
    SchedulerError,
)


@pytest.mark.asyncio
async def test_dispatches_one_at_a_time_with_spacing() -> None:
    loop = asyncio.get_running_loop()
    starts: List[float] = []
    active = 0
    peak = 0

    async def handler(payload: str, options: Dict[str, Any]) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        starts.append(loop.time())
        await asyncio.sleep(0.01)
        active -= 1
        return payload.upper()

    scheduler = GenerationScheduler(handler, min_interval=0.05)

    results = await asyncio.gather(*(scheduler.submit(f'caller-{i}', f'prompt {i}') for i in range(3)))

    assert results == ['PROMPT 0', 'PROMPT 1', 'PROMPT 2']
    assert peak == 1
    gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
    assert all(gap >= 0.045 for gap in gaps)
    assert scheduler.get_status()['queue_length'] == 0


@pytest.mark.asyncio
async def test_duplicate_pending_request_is_rejected() -> None:
    release = asyncio.Event()
    calls: List[str] = []

    async def handler(payload: str, options: Dict[str, Any]) -> str:
        calls.append(payload)
        await release.wait()
        return 'done'

    scheduler = GenerationScheduler(handler, min_interval=0)
    first = asyncio.create_task(scheduler.submit('alice', 'same prompt'))
    await asyncio.sleep(0.01)

    with pytest.raises(DuplicateRequestError, match='Request already in progress'):
        await scheduler.submit('alice', 'same prompt')

    release.set()
    assert await first == 'done'
    assert calls == ['same prompt']


@pytest.mark.asyncio
async def test_request_expiring_in_queue_never_reaches_handler() -> None:
    release = asyncio.Event()
    calls: List[str] = []

    async def handler(payload: str, options: Dict[str, Any]) -> str:
        calls.append(payload)
        await release.wait()
        return payload

    scheduler = GenerationScheduler(handler, min_interval=0)
    blocking = asyncio.create_task(scheduler.submit('alice', 'long running'))
    await asyncio.sleep(0.01)

    with pytest.raises(RequestTimeoutError):
        await scheduler.submit('bob', 'will expire', timeout=0.05)

    release.set()
    await blocking
    await asyncio.sleep(0.01)
    assert calls == ['long running']


@pytest.mark.asyncio
async def test_queue_full_is_rejected_immediately() -> None:
    release = asyncio.Event()

    async def handler(payload: str, options: Dict[str, Any]) -> str:
        await release.wait()
        return payload

    scheduler = GenerationScheduler(handler, min_interval=0, max_queue_size=1)
    in_flight = asyncio.create_task(scheduler.submit('a', 'one'))
    await asyncio.sleep(0.01)
    waiting = asyncio.create_task(scheduler.submit('b', 'two'))
    await asyncio.sleep(0.01)

    with pytest.raises(QueueFullError):
        await scheduler.submit('c', 'three')

    release.set()
    assert await asyncio.gather(in_flight, waiting) == ['one', 'two']


@pytest.mark.asyncio
async def test_handler_errors_propagate_to_the_caller() -> None:
    async def handler(payload: str, options: Dict[str, Any]) -> str:
        raise RuntimeError('backend exploded')

    scheduler = GenerationScheduler(handler, min_interval=0)
    with pytest.raises(RuntimeError, match='backend exploded'):
        await scheduler.submit('alice', 'prompt')
    assert not scheduler.processing


@pytest.mark.asyncio
async def test_clear_fails_waiting_requests() -> None:
    release = asyncio.Event()

    async def handler(payload: str, options: Dict[str, Any]) -> str:
        await release.wait()
        return payload

    scheduler = GenerationScheduler(handler, min_interval=0)
    in_flight = asyncio.create_task(scheduler.submit('a', 'one'))
    await asyncio.sleep(0.01)
    waiting = asyncio.create_task(scheduler.submit('b', 'two'))
    await asyncio.sleep(0.01)

    assert scheduler.clear() == 1
    with pytest.raises(SchedulerError, match='Queue cleared'):
        await waiting

    release.set()
    assert await in_flight == 'one'


@pytest.mark.asyncio
async def test_cancelled_caller_is_removed_from_queue() -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    calls: List[str] = []

    async def handler(payload: str, options: Dict[str, Any]) -> str:
        calls.append(payload)
        started.set()
        await release.wait()
        return f'done {payload}'

    scheduler = GenerationScheduler(handler, min_interval=0)
    first = asyncio.create_task(scheduler.submit('alice', 'first prompt'))
    await started.wait()

    waiting = asyncio.create_task(scheduler.submit('bob', 'second prompt'))
    await asyncio.sleep(0)
    assert scheduler.get_status()['queue_length'] == 1

    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting
    assert scheduler.get_status()['queue_length'] == 0

    release.set()
    assert await first == 'done first prompt'
    await asyncio.sleep(0.01)
    assert calls == ['first prompt']


@pytest.mark.asyncio
async def test_in_flight_request_outlives_its_queue_timeout() -> None:
    loop = asyncio.get_running_loop()

    async def handler(payload: str, options: Dict[str, Any]) -> str:
        await asyncio.sleep(0.1)
        return 'finished'

    scheduler = GenerationScheduler(handler, min_interval=0)
    start = loop.time()

    result = await scheduler.submit('alice', 'slow prompt', timeout=0.02)

    assert result == 'finished'
    assert loop.time() - start >= 0.09
