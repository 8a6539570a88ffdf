"""Unit tests for metrics publication (CloudWatch, Application Insights)."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest
from botocore.exceptions import ClientError

from kvstress.models import CacheReport, ExecutionMode, MetricsDelta, RunConfiguration, RunResult
from kvstress.publisher import (
    CLOUDWATCH_NAMESPACE,
    COMPLETED_EVENT_NAME,
    build_appinsights_envelopes,
    metric_values,
    parse_appinsights_connection_string,
    publish_metrics,
    publish_to_appinsights,
    publish_to_cloudwatch,
)

_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _report(tag: str = "nightly", environment: str = "AWS") -> CacheReport:
    result = RunResult(
        mode=ExecutionMode.REQUESTS_BOUNDED,
        total_requests=100,
        success_count=97,
        timeout_count=2,
        error_count=1,
        avg_latency_ms=1.25,
        p95_latency_ms=3.5,
        requests_per_second=500.0,
        elapsed_seconds=0.2,
        start_time_utc=_NOW,
        end_time_utc=_NOW,
    )
    return CacheReport(
        config=RunConfiguration(tag=tag, environment=environment),
        result=result,
        delta=MetricsDelta(memory_delta_mb=4.5),
    )


def test_metric_values() -> None:
    values = {name: value for name, value, _ in metric_values(_report())}
    assert values == {
        "AvgLatencyMs": 1.25,
        "P95LatencyMs": 3.5,
        "RequestsPerSecond": 500.0,
        "TimeoutCount": 2.0,
        "MemoryDeltaMB": 4.5,
    }


def test_publish_to_cloudwatch() -> None:
    cw = MagicMock()
    assert publish_to_cloudwatch(_report(), client=cw) is True
    kwargs = cw.put_metric_data.call_args.kwargs
    assert kwargs["Namespace"] == CLOUDWATCH_NAMESPACE
    assert len(kwargs["MetricData"]) == 5
    assert kwargs["MetricData"][0]["Dimensions"] == [{"Name": "Tag", "Value": "nightly"}]


def test_publish_to_cloudwatch_without_tag_has_no_dimensions() -> None:
    cw = MagicMock()
    publish_to_cloudwatch(_report(tag=""), client=cw)
    assert cw.put_metric_data.call_args.kwargs["MetricData"][0]["Dimensions"] == []


def test_publish_to_cloudwatch_error_is_swallowed() -> None:
    cw = MagicMock()
    cw.put_metric_data.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutMetricData")
    assert publish_to_cloudwatch(_report(), client=cw) is False


def test_parse_appinsights_connection_string() -> None:
    ikey, url = parse_appinsights_connection_string(
        "InstrumentationKey=abc-123;IngestionEndpoint=https://westeurope-5.in.applicationinsights.azure.com/"
    )
    assert ikey == "abc-123"
    assert url == "https://westeurope-5.in.applicationinsights.azure.com/v2/track"


def test_parse_appinsights_default_endpoint() -> None:
    _, url = parse_appinsights_connection_string("InstrumentationKey=k")
    assert url == "https://dc.services.visualstudio.com/v2/track"


def test_parse_appinsights_missing_key() -> None:
    with pytest.raises(ValueError):
        parse_appinsights_connection_string("IngestionEndpoint=https://x")


def test_build_envelopes() -> None:
    envelopes = build_appinsights_envelopes(_report(environment="AZURE"), "k", now=_NOW)
    assert len(envelopes) == 6
    assert all(e["iKey"] == "k" for e in envelopes)
    event = envelopes[-1]
    assert event["data"]["baseData"]["name"] == COMPLETED_EVENT_NAME
    assert event["data"]["baseData"]["properties"]["Environment"] == "AZURE"


def test_publish_to_appinsights_posts_envelopes() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"itemsReceived": 6, "itemsAccepted": 6})

    ok = asyncio.run(
        publish_to_appinsights(
            _report(environment="AZURE"),
            connection_string="InstrumentationKey=k;IngestionEndpoint=https://ingest.example",
            transport=httpx.MockTransport(handler),
        )
    )
    assert ok is True
    assert len(seen) == 1
    assert str(seen[0].url) == "https://ingest.example/v2/track"
    assert len(json.loads(seen[0].content)) == 6


def test_publish_to_appinsights_http_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    ok = asyncio.run(
        publish_to_appinsights(_report(), connection_string="InstrumentationKey=k", transport=transport)
    )
    assert ok is False


def test_publish_to_appinsights_without_connection_string(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("APPINSIGHTS_CONNECTION_STRING", raising=False)
    assert asyncio.run(publish_to_appinsights(_report())) is False


def test_publish_metrics_routes_by_environment() -> None:
    with patch("kvstress.publisher.publish_to_cloudwatch", return_value=True) as cw:
        assert asyncio.run(publish_metrics(_report(environment="ElastiCache"))) is True
        cw.assert_called_once()
    with patch("kvstress.publisher.publish_to_cloudwatch") as cw:
        assert asyncio.run(publish_metrics(_report(environment="LOCAL"))) is False
        cw.assert_not_called()
