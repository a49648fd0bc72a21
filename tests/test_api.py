from __future__ import annotations

import json
import threading
from typing import Any

import pytest
import requests

from shortcut_sync.api import (
    DecodingError,
    NoCredentialError,
    RemoteStatusError,
    ShortcutClient,
    TransportError,
)
from shortcut_sync.models import Epic, MemberInfo

BASE_URL = "https://api.example.test"


class FakeTokens:
    def __init__(self, token: str | None = "tok-abc"):
        self.token = token

    def get_api_token(self) -> str | None:
        return self.token


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, body: bytes | None = None):
        self.status_code = status_code
        if body is None:
            body = json.dumps(payload).encode()
        self.content = body

    def json(self) -> Any:
        return json.loads(self.content)


class FakeHttp:
    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.responses: dict[str, FakeResponse] = {}
        self.exception: Exception | None = None
        self.closed = False

    def get(self, url: str, params=None, headers=None, timeout=None) -> FakeResponse:
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.exception is not None:
            raise self.exception
        return self.responses[url]

    def close(self) -> None:
        self.closed = True


def _make_client(http: FakeHttp, token: str | None = "tok-abc") -> ShortcutClient:
    return ShortcutClient(FakeTokens(token), http=http, base_url=BASE_URL, timeout_seconds=5, page_size=25)


def test_get_current_member_sends_token_header():
    http = FakeHttp()
    http.responses[f"{BASE_URL}/api/v3/member"] = FakeResponse(
        payload={"mention_name": "ada", "id": "uuid-1"}
    )
    client = _make_client(http)

    member = client.get_current_member()

    assert member == MemberInfo(mention_name="ada")
    assert http.calls[0]["headers"]["Shortcut-Token"] == "tok-abc"
    assert http.calls[0]["timeout"] == 5


def test_missing_token_fails_without_network_call():
    http = FakeHttp()
    client = _make_client(http, token=None)

    with pytest.raises(NoCredentialError) as exc_info:
        client.get_workflows()

    assert exc_info.value.code == "no_api_token"
    assert http.calls == []


def test_empty_token_counts_as_missing():
    http = FakeHttp()
    client = _make_client(http, token="")

    with pytest.raises(NoCredentialError):
        client.get_teams()
    assert http.calls == []


def test_non_2xx_raises_remote_status():
    http = FakeHttp()
    http.responses[f"{BASE_URL}/api/v3/epics/7"] = FakeResponse(status_code=404, payload={})
    client = _make_client(http)

    with pytest.raises(RemoteStatusError) as exc_info:
        client.get_epic(7)

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "HTTP error: 404"


def test_transport_failure_raises_transport_error():
    http = FakeHttp()
    http.exception = requests.ConnectionError("dns lookup failed")
    client = _make_client(http)

    with pytest.raises(TransportError) as exc_info:
        client.get_current_member()

    assert isinstance(exc_info.value.cause, requests.ConnectionError)
    assert exc_info.value.code == "network_error"


def test_invalid_json_raises_decoding_error():
    http = FakeHttp()
    http.responses[f"{BASE_URL}/api/v3/groups"] = FakeResponse(body=b"<html>")
    client = _make_client(http)

    with pytest.raises(DecodingError):
        client.get_teams()


def test_wrong_shape_raises_decoding_error():
    http = FakeHttp()
    http.responses[f"{BASE_URL}/api/v3/epics/3"] = FakeResponse(payload={"id": "three", "name": "E"})
    client = _make_client(http)

    with pytest.raises(DecodingError) as exc_info:
        client.get_epic(3)

    assert isinstance(exc_info.value.cause, TypeError)


def test_get_epic_decodes():
    http = FakeHttp()
    http.responses[f"{BASE_URL}/api/v3/epics/3"] = FakeResponse(payload={"id": 3, "name": "Billing"})
    client = _make_client(http)

    assert client.get_epic(3) == Epic(id=3, name="Billing")


def test_get_my_stories_builds_search_query():
    http = FakeHttp()
    http.responses[f"{BASE_URL}/api/v3/search/stories"] = FakeResponse(
        payload={
            "data": [
                {
                    "id": 11,
                    "name": "Fix login",
                    "story_type": "bug",
                    "app_url": "https://app.shortcut.com/org/story/11",
                    "workflow_id": 1,
                    "workflow_state_id": 100,
                    "epic_id": None,
                }
            ],
            "next": None,
            "total": 1,
        }
    )
    client = _make_client(http)

    stories = client.get_my_stories("ada")

    assert [s.id for s in stories] == [11]
    assert stories[0].kind == "bug"
    assert http.calls[0]["params"] == {"query": "owner:ada !is:done", "page_size": "25"}


def test_validate_token_reduces_failure_to_false_and_keeps_reason():
    http = FakeHttp()
    http.responses[f"{BASE_URL}/api/v3/member"] = FakeResponse(status_code=401, payload={})
    client = _make_client(http)

    assert client.validate_token() is False
    assert isinstance(client.last_validation_error, RemoteStatusError)
    assert client.get_health()["lastValidationError"] == "HTTP error: 401"


def test_validate_token_success_clears_reason():
    http = FakeHttp()
    member_url = f"{BASE_URL}/api/v3/member"
    http.responses[member_url] = FakeResponse(status_code=401, payload={})
    client = _make_client(http)
    assert client.validate_token() is False

    http.responses[member_url] = FakeResponse(payload={"mention_name": "ada"})

    assert client.validate_token() is True
    assert client.last_validation_error is None
    assert client.get_health()["lastValidationError"] is None


def test_validation_reason_is_written_under_stats_lock():
    client = _make_client(FakeHttp(), token=None)
    done = threading.Event()

    def validate() -> None:
        client.validate_token()
        done.set()

    worker = threading.Thread(target=validate)
    with client._stats_lock:
        worker.start()
        assert not done.wait(timeout=0.2)
        assert client._last_validation_error is None
    worker.join(timeout=5)

    assert done.is_set()
    assert isinstance(client.last_validation_error, NoCredentialError)
    assert client.get_health()["lastValidationError"] == "No API token configured"


def test_health_records_last_request():
    http = FakeHttp()
    http.responses[f"{BASE_URL}/api/v3/member"] = FakeResponse(payload={"mention_name": "ada"})
    client = _make_client(http)

    client.get_current_member()
    health = client.get_health()

    assert health["requestCount"] == 1
    assert health["lastRequest"]["endpoint"] == "/api/v3/member"
    assert health["lastRequest"]["status"] == 200


def test_close_closes_http_session():
    http = FakeHttp()
    client = _make_client(http)

    client.close()

    assert http.closed is True
