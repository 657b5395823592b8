import pytest

from clawbridge.core.types import ConnectionConfig
from clawbridge.core.urls import (
    clean_token,
    convert_http_to_ws,
    convert_ws_to_http,
    is_local_gateway_url,
    normalize_http_url,
)


class TestCleanToken:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Bearer abc", "abc"),
            ("bearer   abc ", "abc"),
            ("  BEARER abc", "abc"),
            ("abc", "abc"),
            ("", ""),
            (None, ""),
            ("Bearerabc", "Bearerabc"),
        ],
    )
    def test_strips_bearer_prefix(self, raw, expected) -> None:
        assert clean_token(raw) == expected


class TestUrlConversion:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("wss://gw.example.com/", "https://gw.example.com"),
            ("ws://127.0.0.1:18789", "http://127.0.0.1:18789"),
            ("http://host:8080//", "http://host:8080"),
            ("https://host/base/", "https://host/base"),
            ("gw.example.com", "https://gw.example.com"),
            ("  ws://host  ", "http://host"),
        ],
    )
    def test_normalize_http_url(self, url, expected) -> None:
        assert normalize_http_url(url) == expected

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("http://127.0.0.1:18789/", "ws://127.0.0.1:18789"),
            ("https://gw.example.com", "wss://gw.example.com"),
            ("wss://gw.example.com/", "wss://gw.example.com"),
            ("host:18789", "ws://host:18789"),
        ],
    )
    def test_convert_http_to_ws(self, url, expected) -> None:
        assert convert_http_to_ws(url) == expected

    def test_convert_ws_to_http(self) -> None:
        assert convert_ws_to_http("wss://gw/") == "https://gw"
        assert convert_ws_to_http("ws://gw") == "http://gw"
        assert convert_ws_to_http("http://gw/") == "http://gw"
        assert convert_ws_to_http("gw") == "https://gw"

    def test_urls_are_stable_after_normalizing(self) -> None:
        for url in ["wss://gw/", "http://gw:1/", "gw"]:
            once = normalize_http_url(url)
            assert normalize_http_url(once) == once
            ws = convert_http_to_ws(once)
            assert convert_http_to_ws(ws) == ws


class TestLocalGateway:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("ws://127.0.0.1:18789", True),
            ("http://localhost:3000/", True),
            ("ws://[::1]:18789", True),
            ("wss://gateway.example.com", False),
            ("http://10.0.0.5", False),
            ("", False),
        ],
    )
    def test_is_local_gateway_url(self, url, expected) -> None:
        assert is_local_gateway_url(url) is expected


class TestConnectionConfig:
    def test_derived_urls_and_token(self) -> None:
        config = ConnectionConfig(server_url="http://gw:18789/", token="Bearer  tok ")

        assert config.http_url == "http://gw:18789"
        assert config.ws_url == "ws://gw:18789"
        assert config.bearer_token == "tok"
        assert config.timeout_seconds == 15.0
        assert config.with_timeout(500).timeout_seconds == 0.5

    def test_to_dict_never_contains_secrets(self) -> None:
        data = ConnectionConfig(server_url="ws://gw", token="Bearer secret", password="pw").to_dict()

        assert "secret" not in str(data)
        assert "pw" not in data.values()
        assert data["tokenLength"] == 6
        assert data["hasPassword"] is True

    def test_from_dict(self) -> None:
        config = ConnectionConfig.from_dict({"serverUrl": " ws://gw ", "token": "t", "timeoutMs": "2500"})

        assert config.server_url == "ws://gw"
        assert config.timeout_ms == 2500
        assert config.session_key == "agent:main:main"

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"token": "t"}, "Server URL is required"),
            ({"serverUrl": "ws://gw", "token": "  "}, "Gateway token is required"),
        ],
    )
    def test_from_dict_requires_url_and_token(self, data, message) -> None:
        with pytest.raises(ValueError, match=message):
            ConnectionConfig.from_dict(data)
