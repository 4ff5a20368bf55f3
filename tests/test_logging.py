import asyncio
import logging

import pytest
import structlog

from core.config import Settings
from core.logging import configure_logging, get_logger, run_log_context


def test_run_context_is_bound_inside_the_block():
    with run_log_context("mission-1", "run-1"):
        assert structlog.contextvars.get_contextvars() == {"mission_id": "mission-1", "run_id": "run-1"}
    assert "run_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.asyncio
async def test_concurrent_runs_keep_their_own_context():
    async def observe(run_id):
        with run_log_context("mission-1", run_id):
            await asyncio.sleep(0)
            return structlog.contextvars.get_contextvars()["run_id"]

    assert await asyncio.gather(observe("a"), observe("b")) == ["a", "b"]


def test_json_logging_to_file(tmp_path, capsys):
    log_file = tmp_path / "logs" / "engine.log"
    configure_logging(Settings(_env_file=None, log_format="json", log_level="INFO", log_file=str(log_file)))
    try:
        with run_log_context("mission-9", "run-9"):
            get_logger("tests.logging").info("Mission started", node_count=3)
        for handler in logging.getLogger().handlers:
            handler.flush()
        line = log_file.read_text().strip().splitlines()[-1]
        assert '"run_id": "run-9"' in line
        assert '"event": "Mission started"' in line
    finally:
        structlog.reset_defaults()
        for handler in list(logging.getLogger().handlers):
            logging.getLogger().removeHandler(handler)
            handler.close()
