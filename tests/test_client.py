"""
Tests for the vendor request executor, token handling and response codes.
"""

import pytest
import requests
from datetime import datetime, timedelta
from urllib.parse import unquote

from conftest import FakeResponse

from erpsync.database import Account
from erpsync.errors import TransportFailure, VendorRejected, VendorThrottled
from erpsync.vendor.auth import ACCESS_TOKEN_PATH
from erpsync.vendor.codes import create_error, get_error_info, is_success_code
from erpsync.vendor.signing import generate_sign


class TestSuccessCodes:
    @pytest.mark.parametrize("code", [0, "0", 200, "200", None])
    def test_success_forms(self, code):
        assert is_success_code(code)

    @pytest.mark.parametrize("code", [1, "3001008", 400, "500", ""])
    def test_failure_forms(self, code):
        assert not is_success_code(code)


class TestErrorCatalogue:
    def test_throttled_maps_to_vendor_throttled(self):
        error = create_error("3001008")
        assert isinstance(error, VendorThrottled)
        assert error.retryable is True
        assert error.code == "3001008"

    def test_numeric_code_is_normalized(self):
        error = create_error(3001008)
        assert isinstance(error, VendorThrottled)

    def test_other_codes_are_rejections(self):
        error = create_error("2001006")
        assert isinstance(error, VendorRejected)
        assert error.retryable is False
        assert error.to_dict()["message"] == "Signature is incorrect"

    def test_unknown_code_uses_response_message(self):
        error = create_error("9999", response={"code": "9999", "message": "quota exceeded"})
        assert isinstance(error, VendorRejected)
        assert error.message == "quota exceeded"

    def test_unknown_code_info(self):
        info = get_error_info("12345")
        assert info["message"] == "Unknown error"
        assert info["code"] == "12345"


class TestCall:
    """VendorClient.call against a fake HTTP session."""

    def test_post_success(self, client, fake_http, account):
        fake_http.queue.append({"code": 0, "data": [{"id": 1}], "total": 1})

        resp = client.post(account, "/erp/sc/data/mws/orders", {"start_date": "2025-01-01"})

        assert resp.success
        assert resp.data == [{"id": 1}]
        assert resp.total == 1
        sent = fake_http.requests[0]
        assert sent["method"] == "POST"
        assert sent["url"] == "https://vendor.test/erp/sc/data/mws/orders"
        assert sent["json"] == {"start_date": "2025-01-01"}
        # Business parameters stay out of the query string on POST
        assert set(sent["params"]) == {"access_token", "app_key", "timestamp", "sign"}
        assert sent["params"]["access_token"] == "token-1"
        assert sent["params"]["timestamp"] == "1700000000"

    def test_post_sign_covers_body(self, client, fake_http, account):
        fake_http.queue.append({"code": 0})
        client.post(account, "/x", {"offset": 0, "length": 100})

        params = fake_http.requests[0]["params"]
        expected = generate_sign(account.app_id, {
            "access_token": "token-1",
            "app_key": account.app_id,
            "timestamp": "1700000000",
            "offset": 0,
            "length": 100,
        })
        assert params["sign"] == unquote(expected)

    def test_get_puts_everything_in_query(self, client, fake_http, account):
        fake_http.queue.append({"code": "200", "data": []})
        client.get(account, "/erp/sc/data/seller/lists", {"page": 1, "skip": None})

        sent = fake_http.requests[0]
        assert sent["method"] == "GET"
        assert sent["json"] is None
        assert sent["params"]["page"] == 1
        assert "skip" not in sent["params"]

    @pytest.mark.parametrize("code", [0, "0", 200, "200"])
    def test_success_code_forms(self, client, fake_http, account, code):
        fake_http.queue.append({"code": code, "data": []})
        assert client.post(account, "/x").success

    def test_throttled_code_raises(self, client, fake_http, account):
        fake_http.queue.append({"code": "3001008", "message": "too many"})
        with pytest.raises(VendorThrottled):
            client.post(account, "/x")

    def test_business_error_raises_rejected(self, client, fake_http, account):
        fake_http.queue.append({"code": 400, "message": "bad params"})
        with pytest.raises(VendorRejected) as exc_info:
            client.post(account, "/x")
        assert exc_info.value.code == "400"

    def test_throttled_counted_in_metrics(self, client, fake_http, account):
        from erpsync.vendor import client as client_module

        before = client_module.logger.metrics["throttled_calls"]
        fake_http.queue.append({"code": 3001008})
        with pytest.raises(VendorThrottled):
            client.post(account, "/x")
        assert client_module.logger.metrics["throttled_calls"] == before + 1

    def test_gate_released_after_error(self, client, fake_http, account, gate):
        fake_http.queue.append({"code": 400})
        with pytest.raises(VendorRejected):
            client.post(account, "/x")
        assert gate.in_flight(account.app_id, "/x") == 0


class TestTransportErrors:
    def test_timeout(self, client, fake_http, account):
        fake_http.queue.append(requests.exceptions.Timeout("slow"))
        with pytest.raises(TransportFailure):
            client.post(account, "/x")

    def test_connection_error(self, client, fake_http, account):
        fake_http.queue.append(requests.exceptions.ConnectionError("refused"))
        with pytest.raises(TransportFailure):
            client.post(account, "/x")

    def test_non_json_body(self, client, fake_http, account):
        fake_http.queue.append(FakeResponse(status_code=502, text="<html>Bad gateway</html>"))
        with pytest.raises(TransportFailure):
            client.post(account, "/x")

    def test_http_error_without_code(self, client, fake_http, account):
        fake_http.queue.append(FakeResponse({"error": "oops"}, status_code=500))
        with pytest.raises(TransportFailure):
            client.post(account, "/x")

    def test_http_error_with_vendor_code_uses_catalogue(self, client, fake_http, account):
        fake_http.queue.append(FakeResponse({"code": "3001008"}, status_code=429))
        with pytest.raises(VendorThrottled):
            client.post(account, "/x")

    def test_list_body(self, client, fake_http, account):
        fake_http.queue.append([1, 2, 3])
        with pytest.raises(TransportFailure):
            client.post(account, "/x")


class TestTokens:
    def test_expired_token_fetched_and_stored(self, client, fake_http, account, sessions):
        account.access_token = None
        account.refresh_token = None
        account.token_expires_at = None
        fake_http.queue.append({"code": "200", "data": {"access_token": "fresh", "refresh_token": "r2", "expires_in": 7199}})
        fake_http.queue.append({"code": 0, "data": []})

        client.post(account, "/x")

        token_call, api_call = fake_http.requests
        assert token_call["url"].endswith(ACCESS_TOKEN_PATH)
        assert token_call["data"] == {"appId": account.app_id, "appSecret": "secret"}
        assert api_call["params"]["access_token"] == "fresh"
        with sessions() as session:
            row = session.get(Account, account.id)
            assert row.access_token == "fresh"
            assert row.refresh_token == "r2"
            assert row.token_expires_at > datetime.now()

    def test_refresh_used_when_available(self, client, fake_http, account):
        account.token_expires_at = datetime.now() - timedelta(minutes=1)
        fake_http.queue.append({"code": "200", "data": {"access_token": "refreshed", "expires_in": 100}})
        fake_http.queue.append({"code": 0})

        client.post(account, "/x")

        assert fake_http.requests[0]["data"] == {"appId": account.app_id, "refreshToken": "refresh-1"}
        assert fake_http.requests[1]["params"]["access_token"] == "refreshed"

    def test_invalid_refresh_token_falls_back_to_new_token(self, client, fake_http, account):
        account.token_expires_at = datetime.now() - timedelta(minutes=1)
        fake_http.queue.append({"code": "2001009", "message": "refresh_token invalid"})
        fake_http.queue.append({"code": "200", "data": {"access_token": "brand-new"}})
        fake_http.queue.append({"code": 0})

        client.post(account, "/x")

        assert account.refresh_token is None
        assert fake_http.requests[1]["data"]["appSecret"] == "secret"
        assert fake_http.requests[2]["params"]["access_token"] == "brand-new"

    def test_token_rejected_retries_once(self, client, fake_http, account):
        account.refresh_token = None
        fake_http.queue.append({"code": "2001003", "message": "token expired"})
        fake_http.queue.append({"code": "200", "data": {"access_token": "second"}})
        fake_http.queue.append({"code": 0, "data": ["ok"]})

        resp = client.post(account, "/x")

        assert resp.data == ["ok"]
        assert len(fake_http.requests) == 3
        assert fake_http.requests[2]["params"]["access_token"] == "second"

    def test_token_rejected_twice_raises(self, client, fake_http, account):
        account.refresh_token = None
        fake_http.queue.append({"code": "2001005"})
        fake_http.queue.append({"code": "200", "data": {"access_token": "second"}})
        fake_http.queue.append({"code": "2001005"})

        with pytest.raises(VendorRejected):
            client.post(account, "/x")
