"""
Tests for retry utilities.

Only transport failures are retried; other errors pass straight through.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from portal.utils.retry_utils import NETWORK_ERRORS, retry_on_network_error


def _wrap(mock, **kwargs):
    @retry_on_network_error(**kwargs)
    def call():
        return mock()
    return call


@patch("tenacity.nap.time.sleep")
class TestRetryOnNetworkError:
    """Tests for the retry_on_network_error decorator."""

    def test_returns_first_success(self, mock_sleep):
        fn = MagicMock(return_value="ok")

        assert _wrap(fn)() == "ok"
        assert fn.call_count == 1

    @pytest.mark.parametrize("error", [
        requests.exceptions.ConnectionError("down"),
        requests.exceptions.Timeout("slow"),
    ])
    def test_retries_network_errors(self, mock_sleep, error):
        fn = MagicMock(side_effect=[error, "ok"])

        assert _wrap(fn)() == "ok"
        assert fn.call_count == 2

    def test_reraises_after_max_attempts(self, mock_sleep):
        fn = MagicMock(side_effect=requests.exceptions.ConnectionError("down"))

        with pytest.raises(requests.exceptions.ConnectionError):
            _wrap(fn, max_attempts=2)()
        assert fn.call_count == 2

    def test_other_errors_not_retried(self, mock_sleep):
        fn = MagicMock(side_effect=ValueError("bad"))

        with pytest.raises(ValueError):
            _wrap(fn)()
        assert fn.call_count == 1

    def test_network_errors_tuple(self, mock_sleep):
        assert issubclass(requests.exceptions.ConnectTimeout, NETWORK_ERRORS)
        assert not issubclass(requests.exceptions.HTTPError, NETWORK_ERRORS)
