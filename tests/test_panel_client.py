from __future__ import annotations

import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from pcap_extractor.panel import DatasourceQueryClient, PanelQueryError, QueryTemplate, parse_response


def _frame_payload(fields: list[str], values: list[list]) -> dict:
    return {
        "results": {
            "pcap-extract": {
                "status": 200,
                "frames": [
                    {
                        "schema": {"name": "step_function_status", "fields": [{"name": name} for name in fields]},
                        "data": {"values": values},
                    }
                ],
            }
        }
    }


def test_query_template_request_shape():
    query = QueryTemplate("pcap", "request", "run-1", {"s3://a.pcapng": [1, 2]}).to_query()

    assert query == {
        "refId": "pcap-extract",
        "datasource": {"type": "emnify-pcapextractor-datasource", "uid": "pcap"},
        "action": "request",
        "jobId": "run-1",
        "extract": {"s3://a.pcapng": [1, 2]},
    }


def test_query_template_status_omits_extract():
    assert "extract" not in QueryTemplate("pcap", "status", "run-1").to_query()


def test_parse_response_first_values():
    payload = _frame_payload(["status", "download_url"], [["SUCCEEDED"], ["https://example/run-1.pcapng"]])

    assert parse_response(payload) == {"status": "SUCCEEDED", "download_url": "https://example/run-1.pcapng"}


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        {"results": {}},
        {"results": {"pcap-extract": {"frames": []}}},
        {"results": {"other": {"frames": [{"schema": {"fields": [{"name": "status"}]}}]}}},
    ],
)
def test_parse_response_without_frames(payload):
    assert parse_response(payload) == {}


def test_parse_response_skips_empty_columns():
    payload = _frame_payload(["status", "error", "cause"], [["FAILED"], [], ["bad input"]])

    assert parse_response(payload) == {"status": "FAILED", "cause": "bad input"}


def test_client_posts_queries_with_token():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_frame_payload(["status"], [["RUNNING"]]))

    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    client = DatasourceQueryClient("http://grafana:3000/", api_token="glsa_token", http_client=http_client)

    fields = client.query(QueryTemplate("pcap", "status", "run-1"))

    assert fields == {"status": "RUNNING"}
    request = seen[0]
    assert str(request.url) == "http://grafana:3000/api/ds/query"
    assert request.headers["Authorization"] == "Bearer glsa_token"
    body = json.loads(request.content)
    assert body["queries"][0]["jobId"] == "run-1"


def test_client_without_token_sends_no_authorization():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    client = DatasourceQueryClient("http://grafana", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    client.query(QueryTemplate("pcap", "status", "run-1"))

    assert "Authorization" not in seen[0].headers


def test_client_raises_query_error_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"results": {"pcap-extract": {"status": 400, "error": "JobId is required for status action"}}}
        )

    client = DatasourceQueryClient("http://grafana", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(PanelQueryError, match="JobId is required for status action"):
        client.query(QueryTemplate("pcap", "status", ""))


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (httpx.Response(404, json={"message": "Data source not found"}), "Data source not found"),
        (httpx.Response(404, json={"detail": "data source not found"}), "data source not found"),
        (httpx.Response(502, text="Bad Gateway"), "Bad Gateway"),
        (httpx.Response(500), "HTTP 500"),
    ],
)
def test_client_error_message_fallbacks(response, message):
    client = DatasourceQueryClient(
        "http://grafana", http_client=httpx.Client(transport=httpx.MockTransport(lambda request: response))
    )

    with pytest.raises(PanelQueryError) as info:
        client.query(QueryTemplate("pcap", "status", "run-1"))

    assert str(info.value) == message


def test_parse_response_ignores_malformed_results():
    assert parse_response({"results": ["pcap-extract"]}) == {}
    assert parse_response({"results": {"pcap-extract": {"frames": "nope"}}}) == {}


def test_client_treats_redirect_as_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": "/login"}, text="")

    client = DatasourceQueryClient("http://grafana", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(PanelQueryError, match="HTTP 302"):
        client.query(QueryTemplate("pcap", "status", "run-1"))


def test_client_rejects_non_json_success():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>Grafana</html>")

    client = DatasourceQueryClient("http://grafana", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(PanelQueryError) as info:
        client.query(QueryTemplate("pcap", "status", "run-1"))

    assert str(info.value) == "invalid response from http://grafana/api/ds/query: HTTP 200"


def test_error_message_with_malformed_results():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"results": "broken", "message": "plugin crashed"})

    client = DatasourceQueryClient("http://grafana", http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(PanelQueryError, match="plugin crashed"):
        client.query(QueryTemplate("pcap", "status", "run-1"))


@pytest.mark.parametrize(
    "frame",
    [
        {"schema": "status", "data": {"values": [["RUNNING"]]}},
        {"schema": {"fields": [{"name": "status"}]}, "data": ["RUNNING"]},
        {"schema": {"fields": [{"name": "status"}]}, "data": {"values": ["RUNNING"]}},
    ],
)
def test_parse_response_ignores_malformed_frames(frame):
    assert parse_response({"results": {"pcap-extract": {"frames": [frame]}}}) == {}
