import asyncio

import pytest

from core.http import session as session_module
from core.http.session import cleanup_session, get_session


@pytest.mark.asyncio
async def test_session_is_shared_until_cleanup() -> None:
    first = await get_session()
    second = await get_session()

    assert first is second
    assert first.headers["Accept"] == "application/json"

    await cleanup_session()
    assert first.closed

    replacement = await get_session()
    assert replacement is not first

    await cleanup_session()


@pytest.mark.asyncio
async def test_session_from_another_loop_is_replaced(monkeypatch) -> None:
    current = await get_session()
    old_loop = asyncio.new_event_loop()
    old_loop.close()
    monkeypatch.setattr(session_module, "_session_loop", old_loop)

    replacement = await get_session()

    assert replacement is not current
    await cleanup_session()
    await current.close()
