"""Publish run metrics to the environment's monitoring backend.

- AWS / ELASTICACHE: CloudWatch PutMetricData (boto3)
- AZURE: Application Insights ingestion endpoint (httpx)

Publication is best-effort: failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Any

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from .logging_config import get_logger
from .models import CacheReport

logger = get_logger("publisher")

CLOUDWATCH_NAMESPACE = "Custom/CacheStressTester"
APPINSIGHTS_CONNECTION_STRING_ENV = "APPINSIGHTS_CONNECTION_STRING"
APPINSIGHTS_DEFAULT_ENDPOINT = "https://dc.services.visualstudio.com"
APPINSIGHTS_TRACK_PATH = "/v2/track"
COMPLETED_EVENT_NAME = "CacheStressTestCompleted"
DEFAULT_HTTP_TIMEOUT = 10.0

AWS_ENVIRONMENTS = frozenset({"AWS", "ELASTICACHE"})
AZURE_ENVIRONMENTS = frozenset({"AZURE"})


def metric_values(report: CacheReport) -> list[tuple[str, float, str]]:
    """(name, value, CloudWatch unit) for every published metric."""
    r = report.result
    return [
        ("AvgLatencyMs", r.avg_latency_ms, "Milliseconds"),
        ("P95LatencyMs", r.p95_latency_ms, "Milliseconds"),
        ("RequestsPerSecond", r.requests_per_second, "Count/Second"),
        ("TimeoutCount", float(r.timeout_count), "Count"),
        ("MemoryDeltaMB", report.delta.memory_delta_mb, "Megabytes"),
    ]


def publish_to_cloudwatch(report: CacheReport, client=None) -> bool:
    """Blocking PutMetricData call. Returns True on success."""
    dimensions = [{"Name": "Tag", "Value": report.config.tag}] if report.config.tag else []
    metric_data = [
        {"MetricName": name, "Value": value, "Unit": unit, "Dimensions": dimensions}
        for name, value, unit in metric_values(report)
    ]
    try:
        cw = client or boto3.client("cloudwatch")
        cw.put_metric_data(Namespace=CLOUDWATCH_NAMESPACE, MetricData=metric_data)
    except ClientError as e:
        logger.warning("CloudWatch API error: %s", e)
        return False
    except BotoCoreError as e:
        logger.warning("AWS client error (network/config) while publishing metrics: %s", e)
        return False
    logger.info("Metrics published to CloudWatch namespace %s", CLOUDWATCH_NAMESPACE)
    return True


def parse_appinsights_connection_string(connection_string: str) -> tuple[str, str]:
    """'InstrumentationKey=..;IngestionEndpoint=..' -> (ikey, track_url). Raises ValueError."""
    parts: dict[str, str] = {}
    for segment in connection_string.split(";"):
        key, sep, value = segment.partition("=")
        if sep:
            parts[key.strip().lower()] = value.strip()
    ikey = parts.get("instrumentationkey")
    if not ikey:
        raise ValueError("InstrumentationKey missing from Application Insights connection string")
    endpoint = (parts.get("ingestionendpoint") or APPINSIGHTS_DEFAULT_ENDPOINT).rstrip("/")
    return ikey, endpoint + APPINSIGHTS_TRACK_PATH


def build_appinsights_envelopes(report: CacheReport, ikey: str, now: datetime | None = None) -> list[dict[str, Any]]:
    """One MetricData envelope per metric plus a completion event."""
    ts = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    properties = {
        "Environment": report.config.environment,
        "Tag": report.config.tag,
        "Mode": report.result.mode.value,
    }
    envelopes: list[dict[str, Any]] = [
        {
            "name": "Microsoft.ApplicationInsights.Metric",
            "time": ts,
            "iKey": ikey,
            "data": {
                "baseType": "MetricData",
                "baseData": {
                    "ver": 2,
                    "metrics": [{"name": name, "value": value, "count": 1}],
                    "properties": properties,
                },
            },
        }
        for name, value, _ in metric_values(report)
    ]
    envelopes.append(
        {
            "name": "Microsoft.ApplicationInsights.Event",
            "time": ts,
            "iKey": ikey,
            "data": {
                "baseType": "EventData",
                "baseData": {"ver": 2, "name": COMPLETED_EVENT_NAME, "properties": properties},
            },
        }
    )
    return envelopes


async def publish_to_appinsights(
    report: CacheReport,
    connection_string: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """POST metrics to Application Insights. Returns True on success."""
    conn = connection_string or os.environ.get(APPINSIGHTS_CONNECTION_STRING_ENV, "")
    if not conn.strip():
        logger.info("%s not set, skipping Application Insights publication", APPINSIGHTS_CONNECTION_STRING_ENV)
        return False
    try:
        ikey, url = parse_appinsights_connection_string(conn)
    except ValueError as e:
        logger.warning("Invalid Application Insights connection string: %s", e)
        return False

    envelopes = build_appinsights_envelopes(report, ikey)
    try:
        async with httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT, transport=transport) as client:
            response = await client.post(url, json=envelopes)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Application Insights publication failed: %s", e)
        return False
    logger.info("Metrics published to Application Insights (%d items)", len(envelopes))
    return True


async def publish_metrics(report: CacheReport, environment: str | None = None) -> bool:
    """Route to the backend for environment (defaults to report.config.environment)."""
    env = (environment or report.config.environment).strip().upper()
    if env in AWS_ENVIRONMENTS:
        return await asyncio.to_thread(publish_to_cloudwatch, report)
    if env in AZURE_ENVIRONMENTS:
        return await publish_to_appinsights(report)
    logger.info("No metrics backend for environment %s, skipping publication", env)
    return False
