import os

import pytest
from rich.console import Console

from hardenpipe.errors import ToolError
from hardenpipe.services.download import ToolDownloader


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class FakeResponse:
    def __init__(self, payload: bytes):
        self.payload = payload
        self.headers = {"Content-Length": str(len(payload))}

    def raise_for_status(self):
        return None

    def iter_content(self, chunk_size=8192):
        yield self.payload

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def __init__(self, payload: bytes = b"", error=None):
        self.payload = payload
        self.error = error
        self.calls = []

    def get(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error
        return FakeResponse(self.payload)


def make_downloader(requests_module, allow_insecure_http=False):
    return ToolDownloader(
        logger=DummyLogger(),
        console=Console(record=True),
        requests_module=requests_module,
        allow_insecure_http=allow_insecure_http,
    )


def test_fetch_downloads_executable_tool(tmp_path):
    requests_module = FakeRequestsModule(payload=b"#!/bin/sh\n")
    downloader = make_downloader(requests_module)
    dest = tmp_path / "bin" / "twistcli"

    path = downloader.fetch("https://console.example.com/", str(dest), "scanner", "s3cret")

    assert path == str(dest)
    assert dest.read_bytes() == b"#!/bin/sh\n"
    assert os.access(dest, os.X_OK)
    args, kwargs = requests_module.calls[0]
    assert args[0] == "https://console.example.com/api/v1/util/twistcli"
    assert kwargs["auth"] == ("scanner", "s3cret")
    assert kwargs["stream"] is True


def test_fetch_refuses_plain_http_by_default(tmp_path):
    requests_module = FakeRequestsModule(payload=b"tool")
    downloader = make_downloader(requests_module)

    with pytest.raises(ToolError) as error:
        downloader.fetch("http://console.example.com", str(tmp_path / "twistcli"), "u", "p")

    assert error.value.kind == "EmbeddingToolUnavailable"
    assert requests_module.calls == []


def test_fetch_allows_plain_http_when_enabled(tmp_path):
    downloader = make_downloader(FakeRequestsModule(payload=b"tool"), allow_insecure_http=True)

    path = downloader.fetch("http://console.example.com", str(tmp_path / "twistcli"), "u", "p")

    assert os.path.exists(path)


def test_fetch_removes_partial_file_on_request_error(tmp_path):
    requests_module = FakeRequestsModule()
    requests_module.error = requests_module.RequestException("401 Client Error")
    downloader = make_downloader(requests_module)
    dest = tmp_path / "twistcli"

    with pytest.raises(ToolError, match="download failed") as error:
        downloader.fetch("https://console.example.com", str(dest), "u", "p")

    assert error.value.kind == "EmbeddingToolUnavailable"
    assert not dest.exists()


def test_fetch_rejects_empty_download(tmp_path):
    downloader = make_downloader(FakeRequestsModule(payload=b""))
    dest = tmp_path / "twistcli"

    with pytest.raises(ToolError, match="empty file"):
        downloader.fetch("https://console.example.com", str(dest), "u", "p")

    assert not dest.exists()


class FakeTokenResponse:
    def __init__(self, payload, error=None):
        self.payload = payload
        self.error = error

    def raise_for_status(self):
        if self.error is not None:
            raise self.error

    def json(self):
        return self.payload


class FakeConsoleApi(FakeRequestsModule):
    def __init__(self, response):
        super().__init__()
        self.response = response

    def post(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        return self.response


def test_issue_token_exchanges_credentials_for_token():
    api = FakeConsoleApi(FakeTokenResponse({"token": "console-token"}))

    token = make_downloader(api).issue_token("https://console.example.com/", "scanner", "s3cret")

    assert token == "console-token"
    args, kwargs = api.calls[0]
    assert args[0] == "https://console.example.com/api/v1/authenticate"
    assert kwargs["json"] == {"username": "scanner", "password": "s3cret"}


def test_issue_token_rejected_credentials_are_reported():
    api = FakeConsoleApi(None)
    api.response = FakeTokenResponse({}, error=api.RequestException("401 Client Error: Unauthorized"))

    with pytest.raises(ToolError, match="401") as error:
        make_downloader(api).issue_token("https://console.example.com", "scanner", "wrong")

    assert error.value.kind == "ScannerTokenRejected"


def test_issue_token_requires_token_in_response():
    api = FakeConsoleApi(FakeTokenResponse({"status": "ok"}))

    with pytest.raises(ToolError, match="no token") as error:
        make_downloader(api).issue_token("https://console.example.com", "scanner", "s3cret")

    assert error.value.kind == "ScannerTokenRejected"
