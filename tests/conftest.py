import json
import os
from http import HTTPStatus
from typing import Any, Dict, Optional

import pytest
import requests


def build_response(
    status: int = 200,
    json_data: Any = None,
    *,
    text: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    """A real requests.Response with the given status, body and headers."""
    resp = requests.Response()
    resp.status_code = status
    try:
        resp.reason = HTTPStatus(status).phrase
    except ValueError:
        resp.reason = ""
    if json_data is not None:
        resp._content = json.dumps(json_data).encode("utf-8")
    elif text is not None:
        resp._content = text.encode("utf-8")
    else:
        resp._content = b""
    resp.encoding = "utf-8"
    resp.headers.update(headers or {})
    return resp


@pytest.fixture
def make_response():
    return build_response


@pytest.fixture(autouse=True)
def clean_sf_env(monkeypatch):
    """Keep SF_* variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("SF_") or name == "SFREST_ENV_FILE":
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def token_payload():
    return {
        "access_token": "00DNEW-ACCESS-TOKEN-0123456789",
        "instance_url": "https://myorg.my.salesforce.com/",
        "token_type": "Bearer",
        "issued_at": "1700000000000",
    }


@pytest.fixture
def login_credentials():
    from sfrest.credentials import Credentials

    return Credentials(
        username="user@example.com",
        password="s3cret",
        security_token="TOKEN123",
        client_id="cid",
        client_secret="csecret",
    )
