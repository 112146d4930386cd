"""Application service for the PCAP extractor datasource."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from pcap_extractor.core.arn import execution_arn
from pcap_extractor.core.errors import ArnParseError, ExecutionError, QueryError, ValidationError
from pcap_extractor.core.frames import DataResponse, Frame, QueryDataResponse
from pcap_extractor.core.settings import DataSourceInstanceSettings, PluginSettings, load_instance_settings
from pcap_extractor.domain import (
    ACTION_REQUEST,
    ACTION_STATUS,
    CheckHealthResult,
    ExecutionStatus,
    HealthStatus,
    QueryModel,
    StepFunctionInput,
    parse_query,
)
from pcap_extractor.infrastructure import InstanceManager, ObjectPresigner, StepFunctionsClient, create_aws_clients

logger = logging.getLogger(__name__)

PRESIGN_EXPIRY_SEC = 3600
ARCHIVE_SUFFIX = ".pcapng"


class Datasource:
    """Triggers PCAP extraction executions and reports on them."""

    def __init__(
        self,
        settings: PluginSettings,
        step_functions: StepFunctionsClient | None = None,
        presigner: ObjectPresigner | None = None,
        *,
        config_error: str | None = None,
    ) -> None:
        self._settings = settings
        self._step_functions = step_functions
        self._presigner = presigner
        self._config_error = config_error

    @property
    def settings(self) -> PluginSettings:
        return self._settings

    @property
    def config_error(self) -> str | None:
        """Why the AWS clients could not be built, if they could not."""
        return self._config_error

    def _missing_client(self, kind: str) -> str:
        if self._config_error:
            return f"failed to get AWS config: {self._config_error}"
        return f"{kind} is not initialized"

    def dispose(self) -> None:
        """Called when the instance is replaced; clients need no cleanup."""

    # ------------------------------------------------------------------
    # query handling
    # ------------------------------------------------------------------
    def query_data(self, queries: Iterable[Mapping[str, Any]]) -> QueryDataResponse:
        """Answer every query independently, keyed by its ``refId``."""

        response = QueryDataResponse()
        for query in queries:
            ref_id = str(query.get("refId") or "A")
            response.responses[ref_id] = self.query(query)
        return response

    def query(self, payload: Mapping[str, Any]) -> DataResponse:
        try:
            self.validate_settings()
            model = parse_query(payload)
            return self._dispatch(model)
        except QueryError as exc:
            return DataResponse.from_error(exc.message, status=exc.status)

    def validate_settings(self) -> None:
        if not self._settings.step_function_arn:
            raise ValidationError("Incomplete plugin settings: Step Function ARN not configured")
        if not self._settings.s3_bucket:
            raise ValidationError("Incomplete plugin settings: S3 Bucket name not configured")

    def _dispatch(self, model: QueryModel) -> DataResponse:
        if model.action == ACTION_REQUEST:
            return self.handle_request(model)
        if model.action == ACTION_STATUS:
            return self.handle_status(model)
        raise ValidationError(f"unknown action: '{model.action}'")

    def handle_request(self, model: QueryModel) -> DataResponse:
        if not model.extract:
            raise ValidationError("Extract parameter is required for request action")
        if not model.job_id:
            raise ValidationError("JobId is required for request action")

        logger.info("Processing request action jobId=%s extract=%s", model.job_id, model.extract)
        execution_input = StepFunctionInput(
            job_id=model.job_id,
            bucket=self._settings.s3_bucket,
            extract=dict(model.extract),
        )
        try:
            started_arn = self._start_execution(model.job_id, execution_input)
        except ExecutionError as exc:
            logger.error("Failed to execute Step Function: %s", exc.message)
            raise ExecutionError(f"Step Function execution failed: {exc.message}") from exc

        logger.debug("Step Function executed successfully executionArn=%s", started_arn)
        frame = Frame(name="step_function_request")
        frame.add_field("status", ExecutionStatus.RUNNING.value)
        frame.add_field("job_id", model.job_id)
        return DataResponse(frames=[frame])

    def handle_status(self, model: QueryModel) -> DataResponse:
        if not model.job_id:
            raise ValidationError("JobId is required for status action")

        logger.info("Processing status action jobId=%s", model.job_id)
        try:
            arn = execution_arn(self._settings.step_function_arn, model.job_id)
        except ArnParseError as exc:
            raise ValidationError(f"Failed to parse Step Function ARN: {exc}") from exc

        logger.info("Describing Step Function execution arn=%s", arn)
        if self._step_functions is None:
            raise ExecutionError(f"Failed to get execution status: {self._missing_client('Step Functions client')}")
        try:
            result = self._step_functions.describe_execution(executionArn=arn)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Failed to describe Step Function execution: %s", exc)
            raise ExecutionError(f"Failed to get execution status: {exc}") from exc

        status = str(result.get("status", ""))
        logger.info("Step Function execution status=%s executionArn=%s", status, arn)

        frame = Frame(name="step_function_status")
        frame.add_field("status", status)
        if status == ExecutionStatus.FAILED.value:
            if result.get("error") is not None:
                frame.add_field("error", str(result["error"]))
            if result.get("cause") is not None:
                frame.add_field("cause", str(result["cause"]))

        if status == ExecutionStatus.SUCCEEDED.value:
            key = f"{model.job_id}{ARCHIVE_SUFFIX}"
            url = self._presigned_url(self._settings.s3_bucket, key)
            if url is not None:
                frame.add_field("download_url", url)

        return DataResponse(frames=[frame])

    # ------------------------------------------------------------------
    # AWS calls
    # ------------------------------------------------------------------
    def _start_execution(self, name: str, execution_input: StepFunctionInput) -> str:
        if self._step_functions is None:
            raise ExecutionError(
                f"failed to execute Step Function execution: {self._missing_client('Step Functions client')}"
            )
        try:
            result = self._step_functions.start_execution(
                stateMachineArn=self._settings.step_function_arn,
                name=name,
                input=execution_input.to_json(),
            )
        except (BotoCoreError, ClientError) as exc:
            raise ExecutionError(f"failed to execute Step Function execution: {exc}") from exc
        return str(result.get("executionArn", ""))

    def _presigned_url(self, bucket: str, key: str) -> str | None:
        """Presign a GET for ``key``; failures are logged and yield ``None``."""

        if self._presigner is None:
            logger.warning(
                "Failed to generate presigned URL for completed execution: %s", self._missing_client("S3 presigner")
            )
            return None
        try:
            return self._presigner.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=PRESIGN_EXPIRY_SEC,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Failed to generate presigned URL for completed execution: %s", exc)
            return None

    # ------------------------------------------------------------------
    # health
    # ------------------------------------------------------------------
    def check_health(self) -> CheckHealthResult:
        if not self._settings.s3_bucket:
            return CheckHealthResult(HealthStatus.ERROR, "S3 Bucket name is missing")
        if not self._settings.step_function_arn:
            return CheckHealthResult(HealthStatus.ERROR, "Step Function ARN is missing")
        if self._config_error:
            return CheckHealthResult(HealthStatus.ERROR, f"failed to get AWS config: {self._config_error}")

        messages: list[str] = []
        if self._step_functions is not None:
            try:
                self._step_functions.describe_state_machine(stateMachineArn=self._settings.step_function_arn)
            except (BotoCoreError, ClientError) as exc:
                return CheckHealthResult(HealthStatus.ERROR, f"Cannot access Step Function: {exc}")
            messages.append("Step Function is accessible")

        messages.append("S3 Bucket access is not being tested.")
        return CheckHealthResult(HealthStatus.OK, f"Data source is working: {','.join(messages)}")


def new_datasource(instance: DataSourceInstanceSettings) -> Datasource:
    """Build a datasource backed by real AWS clients.

    When the AWS configuration is unusable (no region, unknown profile,
    refused role assumption) the datasource is still created so settings
    errors keep their own messages; AWS-backed calls then report the
    configuration failure.
    """

    logger.info("Creating new Datasource pcap-extractor uid=%s", instance.uid)
    try:
        clients = create_aws_clients(instance.settings)
    except (BotoCoreError, ClientError) as exc:
        logger.error("failed to get AWS config uid=%s: %s", instance.uid, exc)
        return Datasource(instance.settings, config_error=str(exc))
    return Datasource(instance.settings, clients.step_functions, clients.presigner)


_manager: InstanceManager[Datasource] = InstanceManager(new_datasource)


def get_instance_manager() -> InstanceManager[Datasource]:
    """Return the datasource instance manager for the process."""

    return _manager


def configure_instance_manager(manager: InstanceManager[Datasource]) -> None:
    """Install the instance manager used by the HTTP routes."""

    global _manager
    _manager = manager


def load_configured_datasources(
    manager: InstanceManager[Datasource] | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[str]:
    """Register every datasource found in the environment; returns their uids."""

    manager = manager or get_instance_manager()
    uids: list[str] = []
    for settings in load_instance_settings(environ):
        manager.register(settings)
        uids.append(settings.uid)
    return uids


def reset_instance_manager() -> None:
    """Dispose cached instances and start from an empty manager (used in tests)."""

    global _manager
    _manager.dispose_all()
    _manager = InstanceManager(new_datasource)
