from marshmallow import fields
from datadog_operator.types.base import BaseSchema
from datadog_operator.types.models import (
    ContainerEnvVar,
    ContainerEnvVarSource,
    ConfigMapKeySelector,
    SecretKeySelector,
    ObjectFieldSelector,
    VolumeMount,
    ResourceRequirements,
    ImageConfig,
)


class ConfigMapKeySelectorSchema(BaseSchema):
    """Schema for ConfigMap Key Selector."""

    __model__ = ConfigMapKeySelector
    key = fields.Str(data_key="key", required=True, allow_none=False)
    name = fields.Str(data_key="name", required=True, allow_none=False)
    optional = fields.Bool(
        data_key="optional", required=False, allow_none=True, load_default=None
    )


class SecretKeySelectorSchema(BaseSchema):
    """Schema for Secret Key Selector."""

    __model__ = SecretKeySelector
    key = fields.Str(data_key="key", required=True, allow_none=False)
    name = fields.Str(data_key="name", required=True, allow_none=False)
    optional = fields.Bool(
        data_key="optional", required=False, allow_none=True, load_default=None
    )


class ObjectFieldSelectorSchema(BaseSchema):
    __model__ = ObjectFieldSelector
    field_path = fields.Str(data_key="fieldPath", required=True, allow_none=False)
    api_version = fields.Str(
        data_key="apiVersion", required=False, allow_none=True, load_default=None
    )


class ContainerEnvVarSourceSchema(BaseSchema):
    """Schema for Container Environment Variable Source."""

    __model__ = ContainerEnvVarSource
    config_map_key_ref = fields.Nested(
        ConfigMapKeySelectorSchema(),
        data_key="configMapKeyRef",
        required=False,
        allow_none=True,
        load_default=None,
    )
    secret_key_ref = fields.Nested(
        SecretKeySelectorSchema(),
        data_key="secretKeyRef",
        required=False,
        allow_none=True,
        load_default=None,
    )
    field_ref = fields.Nested(
        ObjectFieldSelectorSchema(),
        data_key="fieldRef",
        required=False,
        allow_none=True,
        load_default=None,
    )


class ContainerEnvVarSchema(BaseSchema):
    """Schema for Container Environment Variables."""

    __model__ = ContainerEnvVar
    name = fields.Str(data_key="name", required=True, allow_none=False)
    value = fields.Str(
        data_key="value", required=False, allow_none=True, load_default=None
    )
    value_from = fields.Nested(
        ContainerEnvVarSourceSchema(),
        data_key="valueFrom",
        required=False,
        allow_none=True,
        load_default=None,
    )


class VolumeMountSchema(BaseSchema):
    __model__ = VolumeMount

    name = fields.Str(data_key="name", required=True, allow_none=False)
    mount_path = fields.Str(data_key="mountPath", required=True, allow_none=False)
    sub_path = fields.Str(
        data_key="subPath", required=False, allow_none=True, load_default=None
    )
    read_only = fields.Bool(
        data_key="readOnly", required=False, allow_none=True, load_default=None
    )
    mount_propagation = fields.Str(
        data_key="mountPropagation", required=False, allow_none=True, load_default=None
    )
    sub_path_expr = fields.Str(
        data_key="subPathExpr", required=False, allow_none=True, load_default=None
    )


class ResourceRequirementsSchema(BaseSchema):
    __model__ = ResourceRequirements
    claims = fields.List(fields.Dict(), data_key="claims", load_default=None)
    requests = fields.Dict(data_key="requests", load_default=None)
    limits = fields.Dict(data_key="limits", load_default=None)


class ImageConfigSchema(BaseSchema):
    __model__ = ImageConfig

    name = fields.Str(data_key="name", required=True, allow_none=False)
    pull_policy = fields.Str(
        data_key="pullPolicy", allow_none=True, load_default="IfNotPresent"
    )
    pull_secrets = fields.List(
        fields.Dict(), data_key="pullSecrets", allow_none=True, load_default=None
    )
