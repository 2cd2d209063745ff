from typing import Optional, Dict, List
from datadog_operator.types.base import BaseModel


class ConfigMapKeySelector(BaseModel):
    key: str
    name: str
    optional: Optional[bool]


class SecretKeySelector(BaseModel):
    key: str
    name: str
    optional: Optional[bool]


class ObjectFieldSelector(BaseModel):
    field_path: str
    api_version: Optional[str]


class ContainerEnvVarSource(BaseModel):
    config_map_key_ref: Optional[ConfigMapKeySelector]
    secret_key_ref: Optional[SecretKeySelector]
    field_ref: Optional[ObjectFieldSelector]


class ContainerEnvVar(BaseModel):
    name: str
    value: Optional[str]
    value_from: Optional[ContainerEnvVarSource]


class VolumeMount(BaseModel):
    name: str
    mount_path: str
    sub_path: Optional[str]
    read_only: Optional[bool]
    mount_propagation: Optional[str]
    sub_path_expr: Optional[str]


class ResourceRequirements(BaseModel):
    claims: Optional[List[Dict]]
    requests: Optional[Dict[str, str]]
    limits: Optional[Dict[str, str]]


class ImageConfig(BaseModel):
    name: str
    pull_policy: Optional[str]
    pull_secrets: Optional[List[Dict[str, str]]]
