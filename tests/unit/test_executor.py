"""Tests for sfrest.executor (retry / backoff / reauth loop)."""

from unittest.mock import MagicMock, call, patch

import pytest
import requests

from sfrest.exceptions import ApiError, AuthError, ConfigurationError
from sfrest.executor import DEFAULT_RETRY_ON_STATUS, RequestExecutor, RetryPolicy

URL = "https://myorg.my.salesforce.com/services/data/v36.0/query/?q=x"
HEADERS = {"Authorization": "Bearer old"}


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def sleep():
    with patch("sfrest.executor.time.sleep") as mocked:
        yield mocked


def make_executor(session, **policy):
    return RequestExecutor(session, RetryPolicy(**policy), timeout=7)


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.retryable_status_codes == frozenset({429, 500, 502, 503, 504})
        assert policy.default_backoff == 10
        assert policy.max_tries is None

    def test_unlimited_is_never_exhausted(self):
        assert RetryPolicy().exhausted(10_000) is False

    def test_exhausted_at_max_tries(self):
        policy = RetryPolicy(max_tries=3)
        assert policy.exhausted(2) is False
        assert policy.exhausted(3) is True

    def test_is_immutable(self):
        with pytest.raises(AttributeError):
            RetryPolicy().max_tries = 5  # type: ignore[misc]

    @pytest.mark.parametrize("max_tries", [0, -1])
    def test_rejects_max_tries_below_one(self, max_tries):
        with pytest.raises(ConfigurationError, match="max_tries"):
            RetryPolicy(max_tries=max_tries)


class TestSuccess:
    def test_returns_decoded_json(self, session, make_response):
        """2xx responses are decoded and the request uses the given options."""
        payload = {"totalSize": 1, "records": [{"Id": "001"}]}
        session.request.return_value = make_response(200, payload)

        result = make_executor(session).execute("GET", URL, headers=HEADERS)

        assert result == payload
        session.request.assert_called_once_with(
            "GET", URL, headers=HEADERS, data=None, timeout=7
        )

    def test_empty_body_returns_none(self, session, make_response):
        session.request.return_value = make_response(204)

        assert make_executor(session).execute("DELETE", URL, headers=HEADERS) is None

    def test_invalid_json_is_an_api_error(self, session, make_response):
        session.request.return_value = make_response(200, text="<html>oops</html>")

        with pytest.raises(ApiError) as exc_info:
            make_executor(session).execute("GET", URL, headers=HEADERS)

        assert exc_info.value.http_status == 200
        assert "oops" in exc_info.value.raw_body

    def test_body_is_sent_as_data(self, session, make_response):
        session.request.return_value = make_response(201, {"id": "001", "success": True})

        make_executor(session).execute("POST", URL, headers=HEADERS, body='{"Name": "Acme"}')

        assert session.request.call_args.kwargs["data"] == '{"Name": "Acme"}'


class TestRetryableStatus:
    @pytest.mark.parametrize("status", sorted(DEFAULT_RETRY_ON_STATUS))
    def test_retried_exactly_max_tries(self, session, sleep, make_response, status):
        """Every retryable status is attempted max_tries times, backing off in between."""
        session.request.return_value = make_response(status, text="busy")

        with pytest.raises(ApiError) as exc_info:
            make_executor(session, max_tries=3, default_backoff=4).execute(
                "GET", URL, headers=HEADERS
            )

        assert session.request.call_count == 3
        assert sleep.call_args_list == [call(4), call(4)]
        assert exc_info.value.http_status == status

    def test_always_500_gives_up_after_three(self, session, sleep, make_response):
        session.request.return_value = make_response(500, text="Server Error")

        with pytest.raises(ApiError) as exc_info:
            make_executor(session, max_tries=3).execute("GET", URL, headers=HEADERS)

        err = exc_info.value
        assert session.request.call_count == 3
        assert err.http_status == 500
        assert err.message == "Internal Server Error"
        assert err.raw_body == "Server Error"

    def test_unlimited_retries_until_success(self, session, sleep, make_response):
        session.request.side_effect = [make_response(503)] * 5 + [make_response(200, {"ok": True})]

        result = make_executor(session, default_backoff=1).execute("GET", URL, headers=HEADERS)

        assert result == {"ok": True}
        assert session.request.call_count == 6
        assert sleep.call_count == 5

    def test_max_tries_one_never_sleeps(self, session, sleep, make_response):
        session.request.return_value = make_response(502)

        with pytest.raises(ApiError):
            make_executor(session, max_tries=1).execute("GET", URL, headers=HEADERS)

        assert session.request.call_count == 1
        sleep.assert_not_called()

    def test_custom_retry_set(self, session, sleep, make_response):
        """Only the configured statuses are retried."""
        session.request.side_effect = [make_response(418), make_response(200, {"ok": 1})]
        executor = make_executor(session, retryable_status_codes=frozenset({418}))

        assert executor.execute("GET", URL, headers=HEADERS) == {"ok": 1}

        session.request.reset_mock(side_effect=True)
        session.request.return_value = make_response(503)
        with pytest.raises(ApiError):
            executor.execute("GET", URL, headers=HEADERS)
        assert session.request.call_count == 1


class TestRetryAfter:
    def test_retry_after_overrides_default(self, session, sleep, make_response):
        session.request.side_effect = [
            make_response(429, headers={"Retry-After": "5"}),
            make_response(200, {"ok": True}),
        ]

        make_executor(session, default_backoff=10).execute("GET", URL, headers=HEADERS)

        sleep.assert_called_once_with(5)

    @pytest.mark.parametrize("value", ["soon", "-1", "1.5", "Wed, 21 Oct 2015 07:28:00 GMT", ""])
    def test_non_numeric_falls_back_to_default(self, session, sleep, make_response, value):
        session.request.side_effect = [
            make_response(429, headers={"Retry-After": value}),
            make_response(200, {"ok": True}),
        ]

        make_executor(session, default_backoff=10).execute("GET", URL, headers=HEADERS)

        sleep.assert_called_once_with(10)

    def test_absent_header_uses_default(self, session, sleep, make_response):
        session.request.side_effect = [make_response(429), make_response(200, {"ok": True})]

        make_executor(session, default_backoff=3).execute("GET", URL, headers=HEADERS)

        sleep.assert_called_once_with(3)

    def test_zero_means_retry_immediately(self, session, sleep, make_response):
        session.request.side_effect = [
            make_response(429, headers={"Retry-After": "0"}),
            make_response(200, {"ok": True}),
        ]

        make_executor(session).execute("GET", URL, headers=HEADERS)

        assert session.request.call_count == 2
        sleep.assert_not_called()

    def test_large_value_is_not_capped(self, session, sleep, make_response):
        session.request.side_effect = [
            make_response(429, headers={"Retry-After": "86400"}),
            make_response(200, {"ok": True}),
        ]

        make_executor(session, max_tries=2).execute("GET", URL, headers=HEADERS)

        sleep.assert_called_once_with(86400)

    def test_only_applies_to_429(self, session, sleep, make_response):
        session.request.side_effect = [
            make_response(503, headers={"Retry-After": "1"}),
            make_response(200, {"ok": True}),
        ]

        make_executor(session, default_backoff=10).execute("GET", URL, headers=HEADERS)

        sleep.assert_called_once_with(10)


class TestUnauthorized:
    def test_session_expiry_reauthenticates_once(self, session, sleep, make_response):
        """INVALID_SESSION_ID triggers one refresh and an immediate retry with new headers."""
        session.request.side_effect = [
            make_response(401, [{"message": "Session expired or invalid", "errorCode": "INVALID_SESSION_ID"}]),
            make_response(200, {"ok": True}),
        ]
        reauth = MagicMock(return_value={"Authorization": "Bearer new"})

        result = make_executor(session).execute(
            "GET", URL, headers=HEADERS, reauthenticate=reauth
        )

        assert result == {"ok": True}
        reauth.assert_called_once_with()
        first, second = session.request.call_args_list
        assert first.kwargs["headers"] == {"Authorization": "Bearer old"}
        assert second.kwargs["headers"] == {"Authorization": "Bearer new"}
        assert first.kwargs["headers"] != second.kwargs["headers"]
        sleep.assert_not_called()

    def test_dict_error_body_is_understood(self, session, sleep, make_response):
        session.request.side_effect = [
            make_response(401, {"errorCode": "INVALID_SESSION_ID"}),
            make_response(200, {"ok": True}),
        ]
        reauth = MagicMock(return_value={"Authorization": "Bearer new"})

        make_executor(session).execute("GET", URL, headers=HEADERS, reauthenticate=reauth)

        reauth.assert_called_once_with()

    @pytest.mark.parametrize(
        "body",
        [
            [{"errorCode": "INVALID_AUTH_HEADER", "message": "bad"}],
            {"error": "invalid_client"},
            None,
        ],
    )
    def test_other_401_is_fatal(self, session, sleep, make_response, body):
        session.request.return_value = make_response(401, body)
        reauth = MagicMock()

        with pytest.raises(AuthError) as exc_info:
            make_executor(session).execute("GET", URL, headers=HEADERS, reauthenticate=reauth)

        assert isinstance(exc_info.value, ApiError)
        assert exc_info.value.http_status == 401
        assert session.request.call_count == 1
        reauth.assert_not_called()
        sleep.assert_not_called()

    def test_session_expiry_without_reauth_hook_is_fatal(self, session, make_response):
        session.request.return_value = make_response(401, {"errorCode": "INVALID_SESSION_ID"})

        with pytest.raises(AuthError):
            make_executor(session).execute("POST", URL, headers=HEADERS)

        assert session.request.call_count == 1

    def test_failed_reauth_is_not_retried(self, session, sleep, make_response):
        session.request.return_value = make_response(401, {"errorCode": "INVALID_SESSION_ID"})
        reauth = MagicMock(side_effect=AuthError(400, "Bad Request", '{"error":"invalid_grant"}'))

        with pytest.raises(AuthError) as exc_info:
            make_executor(session).execute("GET", URL, headers=HEADERS, reauthenticate=reauth)

        assert exc_info.value.http_status == 400
        assert session.request.call_count == 1

    def test_reauth_counts_against_max_tries(self, session, sleep, make_response):
        session.request.return_value = make_response(401, {"errorCode": "INVALID_SESSION_ID"})
        reauth = MagicMock(return_value={"Authorization": "Bearer new"})

        with pytest.raises(ApiError) as exc_info:
            make_executor(session, max_tries=1).execute(
                "GET", URL, headers=HEADERS, reauthenticate=reauth
            )

        assert exc_info.value.http_status == 401
        reauth.assert_called_once_with()
        assert session.request.call_count == 1


class TestFatal:
    @pytest.mark.parametrize("status", [400, 403, 404, 405])
    def test_non_retryable_status(self, session, sleep, make_response, status):
        body = [{"errorCode": "NOT_FOUND", "message": "The requested resource does not exist"}]
        session.request.return_value = make_response(status, body)

        with pytest.raises(ApiError) as exc_info:
            make_executor(session).execute("GET", URL, headers=HEADERS)

        assert exc_info.value.http_status == status
        assert "NOT_FOUND" in exc_info.value.raw_body
        assert not isinstance(exc_info.value, AuthError)
        assert session.request.call_count == 1
        sleep.assert_not_called()

    def test_error_message_carries_status_and_body(self, session, make_response):
        session.request.return_value = make_response(404, text="missing")

        with pytest.raises(ApiError, match="404 Not Found Content: missing"):
            make_executor(session).execute("GET", URL, headers=HEADERS)


class TestNetworkErrors:
    def test_connection_error_is_retried(self, session, sleep, make_response):
        session.request.side_effect = [
            requests.ConnectionError("Network error"),
            make_response(200, {"ok": True}),
        ]

        result = make_executor(session, default_backoff=2).execute("GET", URL, headers=HEADERS)

        assert result == {"ok": True}
        sleep.assert_called_once_with(2)

    def test_exhausted_network_errors_have_no_status(self, session, sleep):
        session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(ApiError) as exc_info:
            make_executor(session, max_tries=2).execute("GET", URL, headers=HEADERS)

        assert exc_info.value.http_status is None
        assert "read timed out" in exc_info.value.message
        assert session.request.call_count == 2

    @pytest.mark.parametrize(
        "exc",
        [
            requests.exceptions.MissingSchema("No scheme supplied"),
            requests.exceptions.InvalidSchema("No connection adapters were found"),
            requests.exceptions.InvalidURL("Failed to parse"),
            requests.exceptions.InvalidHeader("Invalid leading whitespace"),
        ],
    )
    def test_request_errors_that_cannot_succeed_are_fatal(self, session, sleep, exc):
        """Malformed URLs or headers fail on the first attempt, even with unlimited retries."""
        session.request.side_effect = exc

        with pytest.raises(ApiError) as exc_info:
            make_executor(session).execute("GET", URL, headers=HEADERS)

        assert exc_info.value.http_status is None
        assert str(exc) in exc_info.value.message
        assert session.request.call_count == 1
        sleep.assert_not_called()
