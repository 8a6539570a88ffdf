"""Resolve the cache connection string from AWS Secrets Manager.

ARN forms accepted:
    arn:aws:secretsmanager:us-east-1:123456789012:secret:my-secret-AbCdEf
    arn:aws:secretsmanager:us-east-1:123456789012:secret:my-secret-AbCdEf:RedisConnectionString::
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import SecretResolutionError
from .logging_config import get_logger

logger = get_logger("secrets")

CONNECTION_STRING_FIELD = "RedisConnectionString"
# Console-generated secret ARNs end with '-' plus six random characters
_CONSOLE_SUFFIX = re.compile(r"^[A-Za-z0-9]{6}$")


@dataclass(frozen=True, slots=True)
class AwsArn:
    partition: str = "aws"
    service: str = ""
    region: str = ""
    account_id: str = ""
    resource_type: str = ""
    resource_id: str = ""

    @classmethod
    def parse(cls, arn: str) -> "AwsArn":
        """Parse 'arn:partition:service:region:account:type/id' or '...:type:id'.

        Raises:
            SecretResolutionError: If the ARN is empty or malformed
        """
        if not arn or not arn.strip():
            raise SecretResolutionError("ARN cannot be null or empty")
        arn = arn.strip()
        parts = arn.split(":", 5)
        if len(parts) < 6 or parts[0] != "arn":
            raise SecretResolutionError("Invalid ARN format", context={"arn": arn})
        resource = parts[5]
        # "secret:prod/name" splits on the colon; "role/admin" on the slash
        slash, colon = resource.find("/"), resource.find(":")
        sep = "/" if slash != -1 and (colon == -1 or slash < colon) else ":"
        resource_type, _, resource_id = resource.partition(sep)
        return cls(
            partition=parts[1],
            service=parts[2],
            region=parts[3],
            account_id=parts[4],
            resource_type=resource_type,
            resource_id=resource_id,
        )

    def __str__(self) -> str:
        return (
            f"arn:{self.partition}:{self.service}:{self.region}:"
            f"{self.account_id}:{self.resource_type}:{self.resource_id}"
        )


@dataclass(frozen=True, slots=True)
class AwsSecretArn(AwsArn):
    json_key: str = ""
    stage: str = ""

    @classmethod
    def parse(cls, arn: str) -> "AwsSecretArn":
        """Parse a Secrets Manager ARN with optional ':json_key:stage' segments."""
        if not arn or not arn.strip():
            raise SecretResolutionError("ARN cannot be null or empty")
        parts = arn.strip().split(":")
        if len(parts) < 7:
            raise SecretResolutionError("Invalid secret ARN format", context={"arn": arn})
        base = AwsArn.parse(":".join(parts[:7]))
        remainder = parts[7:]
        return cls(
            partition=base.partition,
            service=base.service,
            region=base.region,
            account_id=base.account_id,
            resource_type=base.resource_type,
            resource_id=base.resource_id,
            json_key=remainder[0] if len(remainder) >= 1 else "",
            stage=remainder[1] if len(remainder) >= 2 else "",
        )

    @property
    def secret_name(self) -> str:
        """Resource id without the console-generated '-XXXXXX' suffix."""
        head, sep, last = self.resource_id.rpartition("-")
        if sep and _CONSOLE_SUFFIX.match(last):
            return head
        return self.resource_id

    def __str__(self) -> str:
        s = AwsArn.__str__(self)
        if self.json_key:
            s += f":{self.json_key}"
        if self.stage:
            s += f":{self.stage}"
        return s


def extract_connection_string(secret_string: str, json_key: str = "") -> str:
    """Plain secrets are returned as-is; JSON secrets yield json_key (default RedisConnectionString)."""
    try:
        data = json.loads(secret_string)
    except json.JSONDecodeError:
        return secret_string
    if not isinstance(data, dict):
        return secret_string
    field = json_key or CONNECTION_STRING_FIELD
    value = data.get(field)
    if not value:
        raise SecretResolutionError("Secret JSON has no connection string field", context={"field": field})
    return str(value)


def get_connection_string(secret_arn: str, client=None) -> str:
    """Fetch and decode the connection string stored in secret_arn.

    Args:
        secret_arn: Secrets Manager ARN (optionally with json key / stage segments)
        client: Optional pre-built secretsmanager client (tests, custom sessions)

    Raises:
        SecretResolutionError: If the ARN is invalid, the call fails or the payload is empty
    """
    arn = AwsSecretArn.parse(secret_arn)
    sm = client or boto3.client("secretsmanager", region_name=arn.region)
    request = {"SecretId": arn.secret_name}
    if arn.stage:
        request["VersionStage"] = arn.stage
    try:
        response = sm.get_secret_value(**request)
    except (ClientError, BotoCoreError) as e:
        logger.error("Unable to read secret %s: %s", arn.secret_name, e)
        raise SecretResolutionError(
            "Unable to read secret", context={"secret": arn.secret_name}, original_error=e
        ) from e

    secret_string = (response or {}).get("SecretString")
    if not secret_string:
        raise SecretResolutionError("Secret value is empty or unsupported format", context={"secret": arn.secret_name})
    return extract_connection_string(secret_string, arn.json_key)
