"""Unit tests for HttpDefinitionSink using httpx.MockTransport."""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from adgroupsync.adapters.sink.http import HttpDefinitionSink
from adgroupsync.core.exceptions import SinkError
from adgroupsync.platform.access_control.schemas import Principal, PrincipalKind

URL = "http://consumer.example.com/groups"


def _definitions():
    group = Principal(kind=PrincipalKind.GROUP, name="Domain Users@EXAMPLE", namespace="Default")
    alice = Principal(kind=PrincipalKind.USER, name="alice@EXAMPLE", namespace="Default")
    everyone = Principal(kind=PrincipalKind.GROUP, name="Everyone", namespace="Default")
    return {group: [alice], everyone: []}


def _sink(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpDefinitionSink(URL, client=client, logger=MagicMock()), client


class TestBuildPayload:
    def test_payload_shape(self):
        payload = HttpDefinitionSink.build_payload(_definitions(), case_sensitive=False)

        assert payload["case_sensitive"] is False
        assert payload["groups"][0] == {
            "group": {"kind": "group", "name": "Domain Users@EXAMPLE", "namespace": "Default"},
            "members": [{"kind": "user", "name": "alice@EXAMPLE", "namespace": "Default"}],
        }
        assert payload["groups"][1]["members"] == []

    def test_empty_definitions(self):
        assert HttpDefinitionSink.build_payload({}, True) == {"case_sensitive": True, "groups": []}


class TestPush:
    @pytest.mark.asyncio
    async def test_posts_json(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        sink, client = _sink(handler)
        async with client:
            await sink.push_group_definitions(_definitions(), False)

        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert str(requests[0].url) == URL
        body = json.loads(requests[0].content)
        assert body["case_sensitive"] is False
        assert [g["group"]["name"] for g in body["groups"]] == ["Domain Users@EXAMPLE", "Everyone"]

    @pytest.mark.asyncio
    async def test_rejected_push(self):
        sink, client = _sink(lambda request: httpx.Response(500, text="boom"))

        async with client:
            with pytest.raises(SinkError, match="HTTP 500"):
                await sink.push_group_definitions(_definitions(), False)

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        sink, client = _sink(handler)
        async with client:
            with pytest.raises(SinkError, match="failed"):
                await sink.push_group_definitions(_definitions(), False)
