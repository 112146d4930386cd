from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest
from botocore.stub import Stubber

sys.path.append(str(Path(__file__).resolve().parents[1]))

from pcap_extractor.application import Datasource
from pcap_extractor.core.settings import load_plugin_settings
from pcap_extractor.infrastructure import aws, create_aws_clients, create_session

STATE_MACHINE_ARN = "arn:aws:states:eu-west-1:123456789012:stateMachine:pcap"


@pytest.fixture()
def settings():
    return load_plugin_settings(
        {
            "stepFunctionArn": STATE_MACHINE_ARN,
            "s3Bucket": "pcap-bucket",
            "authType": "keys",
            "defaultRegion": "eu-west-1",
        },
        {"accessKey": "AKIDEXAMPLE", "secretKey": "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"},
    )


def test_clients_use_configured_region_and_single_attempt(settings):
    clients = create_aws_clients(settings)

    assert clients.step_functions.meta.region_name == "eu-west-1"
    assert clients.presigner.meta.region_name == "eu-west-1"
    assert clients.step_functions.meta.config.retries["total_max_attempts"] == 1


def test_presigned_url_expires_after_an_hour(settings):
    clients = create_aws_clients(settings)

    url = clients.presigner.generate_presigned_url(
        "get_object", Params={"Bucket": "pcap-bucket", "Key": "run-1.pcapng"}, ExpiresIn=3600
    )

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.path.endswith("run-1.pcapng")
    assert query["X-Amz-Expires"] == ["3600"]
    assert query["X-Amz-Algorithm"] == ["AWS4-HMAC-SHA256"]


def test_custom_endpoint(settings):
    custom = settings.model_copy(update={"endpoint": "http://localhost:4566"})

    clients = create_aws_clients(custom)

    assert clients.step_functions.meta.endpoint_url == "http://localhost:4566"


def test_datasource_against_stubbed_client(settings):
    clients = create_aws_clients(settings)
    execution = "arn:aws:states:eu-west-1:123456789012:execution:pcap:run-9"
    stubber = Stubber(clients.step_functions)
    stubber.add_response(
        "describe_execution",
        {
            "executionArn": execution,
            "stateMachineArn": STATE_MACHINE_ARN,
            "status": "FAILED",
            "startDate": datetime(2025, 1, 1, tzinfo=timezone.utc),
            "error": "States.TaskFailed",
            "cause": "source file missing",
        },
        {"executionArn": execution},
    )

    with stubber:
        response = Datasource(settings, clients.step_functions, clients.presigner).query(
            {"action": "status", "JobId": "run-9"}
        )

    assert [field.name for field in response.frames[0].fields] == ["status", "error", "cause"]
    stubber.assert_no_pending_responses()


def test_datasource_reports_stubbed_client_error(settings):
    clients = create_aws_clients(settings)
    stubber = Stubber(clients.step_functions)
    stubber.add_client_error("start_execution", service_error_code="InvalidName", service_message="bad name")

    with stubber:
        response = Datasource(settings, clients.step_functions, clients.presigner).query(
            {"action": "request", "JobId": "run-1", "Extract": {"s3://a.pcapng": [1]}}
        )

    assert response.error.startswith("Step Function execution failed: failed to execute Step Function execution:")
    assert "InvalidName" in response.error


class _FakeSts:
    def __init__(self, calls: list[dict]) -> None:
        self._calls = calls

    def assume_role(self, **kwargs):
        self._calls.append(kwargs)
        return {
            "Credentials": {
                "AccessKeyId": "ASIATEMP",
                "SecretAccessKey": "temp-secret",
                "SessionToken": "temp-token",
            }
        }


def test_create_session_assumes_role(monkeypatch):
    sessions: list[dict] = []
    assume_calls: list[dict] = []

    class FakeSession:
        def __init__(self, **kwargs) -> None:
            sessions.append(kwargs)
            self.region_name = kwargs.get("region_name")

        def client(self, service, **kwargs):
            assert service == "sts"
            return _FakeSts(assume_calls)

    monkeypatch.setattr(aws.boto3, "Session", FakeSession)
    settings = load_plugin_settings(
        {
            "authType": "credentials",
            "profile": "pcap",
            "defaultRegion": "eu-west-1",
            "assumeRoleArn": "arn:aws:iam::123456789012:role/pcap",
            "externalId": "grafana",
        }
    )

    session = create_session(settings)

    assert sessions[0] == {"region_name": "eu-west-1", "profile_name": "pcap"}
    assert assume_calls == [
        {
            "RoleArn": "arn:aws:iam::123456789012:role/pcap",
            "RoleSessionName": "grafana-pcap-extractor",
            "ExternalId": "grafana",
        }
    ]
    assert sessions[1] == {
        "aws_access_key_id": "ASIATEMP",
        "aws_secret_access_key": "temp-secret",
        "aws_session_token": "temp-token",
        "region_name": "eu-west-1",
    }
    assert session.region_name == "eu-west-1"
