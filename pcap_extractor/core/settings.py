"""Datasource instance settings.

Grafana hands every datasource instance a ``jsonData`` document and a
``secureJsonData`` document. Outside Grafana the same documents come from a
provisioning YAML file (the ``datasources:`` format Grafana itself reads) or,
for a single datasource, from environment variables.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from pcap_extractor.core.errors import SettingsError

PLUGIN_TYPE = "emnify-pcapextractor-datasource"
DEFAULT_DATASOURCE_UID = "pcap-extractor"
PROVISIONING_ENV = "PCAP_EXTRACTOR_PROVISIONING"


class PluginSettings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    step_function_arn: str = Field(default="", alias="stepFunctionArn")
    s3_bucket: str = Field(default="", alias="s3Bucket")
    auth_type: Literal["default", "keys", "credentials", "ec2_iam_role"] = Field(default="default", alias="authType")
    region: str = Field(default="", alias="defaultRegion")
    profile: str = ""
    assume_role_arn: str = Field(default="", alias="assumeRoleArn")
    external_id: str = Field(default="", alias="externalId")
    endpoint: str = ""
    access_key: str = Field(default="", alias="accessKey", repr=False)
    secret_key: str = Field(default="", alias="secretKey", repr=False)
    session_token: str = Field(default="", alias="sessionToken", repr=False)

    @field_validator(
        "step_function_arn",
        "s3_bucket",
        "region",
        "profile",
        "assume_role_arn",
        "external_id",
        "endpoint",
        mode="before",
    )
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("auth_type", mode="before")
    @classmethod
    def _default_auth_type(cls, value: Any) -> Any:
        return value or "default"


class DataSourceInstanceSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str
    name: str = ""
    type: str = PLUGIN_TYPE
    version: int = 1
    settings: PluginSettings = PluginSettings()


def load_plugin_settings(
    json_data: Mapping[str, Any] | None,
    secure_json_data: Mapping[str, Any] | None = None,
) -> PluginSettings:
    """Validate the plugin part of a datasource's settings."""

    merged: dict[str, Any] = dict(json_data or {})
    merged.update(secure_json_data or {})
    try:
        return PluginSettings.model_validate(merged)
    except PydanticValidationError as exc:
        raise SettingsError(f"failed to load plugin settings: {exc}") from exc


def instance_settings_from_document(document: Mapping[str, Any]) -> DataSourceInstanceSettings:
    """Build instance settings from one provisioning ``datasources`` entry."""

    uid = str(document.get("uid") or "").strip()
    if not uid:
        raise SettingsError("datasource uid is required")
    secure = document.get("decryptedSecureJsonData") or document.get("secureJsonData")
    plugin_settings = load_plugin_settings(document.get("jsonData"), secure)
    try:
        version = int(document.get("version") or 1)
    except (TypeError, ValueError) as exc:
        raise SettingsError(f"invalid datasource version for {uid}") from exc
    return DataSourceInstanceSettings(
        uid=uid,
        name=str(document.get("name") or uid),
        type=str(document.get("type") or PLUGIN_TYPE),
        version=version,
        settings=plugin_settings,
    )


def load_provisioning_file(path: str | Path) -> list[DataSourceInstanceSettings]:
    """Read PCAP extractor datasources from a Grafana provisioning file."""

    with Path(path).open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise SettingsError(f"provisioning file {path} must contain a mapping")

    entries = data.get("datasources") or []
    if not isinstance(entries, list):
        raise SettingsError(f"'datasources' in {path} must be a list")

    result: list[DataSourceInstanceSettings] = []
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("type") != PLUGIN_TYPE:
            continue
        result.append(instance_settings_from_document(entry))
    return result


def load_env_settings(environ: Mapping[str, str] | None = None) -> DataSourceInstanceSettings | None:
    env = os.environ if environ is None else environ
    arn = env.get("PCAP_EXTRACTOR_STEP_FUNCTION_ARN", "").strip()
    bucket = env.get("PCAP_EXTRACTOR_S3_BUCKET", "").strip()
    if not arn and not bucket:
        return None

    json_data = {
        "stepFunctionArn": arn,
        "s3Bucket": bucket,
        "authType": env.get("PCAP_EXTRACTOR_AUTH_TYPE", "default"),
        "defaultRegion": env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or "",
        "profile": env.get("AWS_PROFILE", ""),
        "assumeRoleArn": env.get("PCAP_EXTRACTOR_ASSUME_ROLE_ARN", ""),
        "externalId": env.get("PCAP_EXTRACTOR_EXTERNAL_ID", ""),
        "endpoint": env.get("PCAP_EXTRACTOR_ENDPOINT", ""),
    }
    secure_json_data = {
        "accessKey": env.get("AWS_ACCESS_KEY_ID", ""),
        "secretKey": env.get("AWS_SECRET_ACCESS_KEY", ""),
        "sessionToken": env.get("AWS_SESSION_TOKEN", ""),
    }
    uid = env.get("PCAP_EXTRACTOR_DATASOURCE_UID") or DEFAULT_DATASOURCE_UID
    return DataSourceInstanceSettings(
        uid=uid,
        name=env.get("PCAP_EXTRACTOR_DATASOURCE_NAME") or "PCAP Extractor",
        settings=load_plugin_settings(json_data, secure_json_data),
    )


def load_instance_settings(environ: Mapping[str, str] | None = None) -> list[DataSourceInstanceSettings]:
    """Collect every configured datasource, provisioning file first."""

    env = os.environ if environ is None else environ
    instances: list[DataSourceInstanceSettings] = []
    provisioning = env.get(PROVISIONING_ENV)
    if provisioning:
        instances.extend(load_provisioning_file(provisioning))

    from_env = load_env_settings(env)
    if from_env is not None and all(item.uid != from_env.uid for item in instances):
        instances.append(from_env)
    return instances
