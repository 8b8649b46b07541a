import asyncio

import anyio
import pytest

from formflow.core.async_utils import call_with_timeout, run_async


async def _sample() -> str:
    await anyio.sleep(0)
    return "ok"


def test_run_async_from_sync_code():
    assert run_async(_sample()) == "ok"


@pytest.mark.asyncio
async def test_run_async_refuses_running_loop():
    coro = _sample()
    with pytest.raises(RuntimeError):
        run_async(coro)
    coro.close()


@pytest.mark.asyncio
async def test_run_async_works_in_worker_thread(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail_run(*_args: object, **_kwargs: object) -> None:
        pytest.fail("asyncio.run should not be used")

    monkeypatch.setattr(asyncio, "run", _fail_run)

    def _call() -> str:
        return run_async(_sample())

    result = await anyio.to_thread.run_sync(_call)
    assert result == "ok"


@pytest.mark.asyncio
async def test_call_with_timeout_raises_on_deadline():
    async def _slow() -> str:
        await asyncio.sleep(5)
        return "late"

    with pytest.raises(TimeoutError):
        await call_with_timeout(_slow, timeout=0.01)


@pytest.mark.asyncio
async def test_call_with_timeout_without_deadline():
    assert await call_with_timeout(_sample, timeout=None) == "ok"
