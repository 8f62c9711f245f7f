"""Tests for the CI backpressure throttle."""

from unittest.mock import MagicMock, patch

from update.throttle import CiThrottle, fetch_queue_depth


class TestCiThrottle:
    """Polling behaviour."""

    def test_sleeps_until_queue_drains(self):
        """Depths 5, 3, 1 with threshold 2 sleep exactly twice."""
        depths = iter([5, 3, 1])
        sleep = MagicMock()
        throttle = CiThrottle(threshold=2, interval_sec=60, signal=lambda: next(depths), sleep=sleep)

        assert throttle.wait_until_free() == 2
        assert sleep.call_count == 2
        sleep.assert_called_with(60)

    def test_threshold_is_inclusive(self):
        """A depth equal to the threshold does not block."""
        sleep = MagicMock()
        throttle = CiThrottle(threshold=2, interval_sec=60, signal=lambda: 2, sleep=sleep)

        assert throttle.wait_until_free() == 0
        sleep.assert_not_called()

    def test_unavailable_signal_fails_open(self, caplog):
        """An unreachable signal is logged and does not block."""
        sleep = MagicMock()
        throttle = CiThrottle(threshold=2, interval_sec=60, signal=lambda: None, sleep=sleep)

        assert throttle.wait_until_free() == 0
        sleep.assert_not_called()
        assert "CI queue depth unavailable" in caplog.text


class TestFetchQueueDepth:
    """Reading the stats endpoint."""

    @patch("update.throttle.get_json")
    def test_reads_waiting_messages(self, mock_get_json):
        """The depth is evaluator.messages.waiting."""
        mock_get_json.return_value = (200, {}, {"evaluator": {"messages": {"waiting": 7}}})

        assert fetch_queue_depth("https://ci.example/stats") == 7
        mock_get_json.assert_called_once_with("https://ci.example/stats", use_cache=False)

    @patch("update.throttle.get_json")
    def test_transport_failure(self, mock_get_json):
        """Status 0 means no signal."""
        mock_get_json.return_value = (0, {}, None)

        assert fetch_queue_depth() is None

    @patch("update.throttle.get_json")
    def test_malformed_payload(self, mock_get_json):
        """Unexpected JSON shapes mean no signal."""
        mock_get_json.return_value = (200, {}, {"evaluator": {}})

        assert fetch_queue_depth() is None
