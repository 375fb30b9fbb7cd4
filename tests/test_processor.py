"""Tests for the background webhook processor."""
import time
from unittest.mock import patch

from consultflow.processor import WebhookProcessor


def test_run_once_drains(store, config):
    with patch("consultflow.webhooks.process_queue",
               return_value={"processed": 0, "succeeded": 0, "failed": 0}) as drain:
        result = WebhookProcessor(store, config).run_once()
    drain.assert_called_once_with(store, config)
    assert result["processed"] == 0


def test_run_once_swallows_errors(store, config):
    processor = WebhookProcessor(store, config)
    with patch("consultflow.webhooks.process_queue", side_effect=RuntimeError("db locked")):
        assert processor.run_once() is None
    assert processor.runs == 1


def test_disabled_interval_does_not_start(store, config):
    config.drain_interval_secs = 0
    processor = WebhookProcessor(store, config)
    assert processor.start() is False
    assert not processor.running


def test_loop_runs_until_stopped(store, config):
    config.drain_interval_secs = 0.01
    processor = WebhookProcessor(store, config)
    with patch("consultflow.webhooks.process_queue", return_value={}):
        assert processor.start()
        assert processor.start() is False
        deadline = time.time() + 2
        while processor.runs < 2 and time.time() < deadline:
            time.sleep(0.01)
        processor.stop()

    assert processor.runs >= 2
    assert not processor.running
