import logging

import pytest
from loguru import logger

import main
from telemetry_kit.core.loguru_logger import setup_logging


def test_stdlib_logging_is_routed_to_loguru():
    setup_logging("WARNING")
    messages = []
    sink_id = logger.add(messages.append, format="{message}")
    try:
        logging.getLogger("httpx").error("request failed")
        logging.getLogger("some.library").warning("library warning")
    finally:
        logger.remove(sink_id)

    assert any("request failed" in message for message in messages)
    assert any("library warning" in message for message in messages)


@pytest.mark.asyncio
async def test_lifespan_manages_redis_and_database(mocker):
    redis_client = mocker.AsyncMock()
    mocker.patch.object(main, "create_redis_client", return_value=redis_client)
    mocker.patch.object(main, "setup_logging")

    async with main.lifespan(main.main_app):
        assert main.main_app.state.redis is redis_client

    redis_client.aclose.assert_awaited_once()
