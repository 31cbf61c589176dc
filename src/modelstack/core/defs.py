"""
Pydantic definitions for model and datasource configuration.

These mirror the JSON documents found under ``<config_dir>/models`` and
``<config_dir>/datasources.json``.

Usage:
    config = ModelConfig.model_validate({
        "name": "Note",
        "properties": {"title": {"type": "string", "required": True}},
        "relations": {"author": {"type": "belongsTo", "model": "User"}},
    })
"""

from __future__ import annotations

import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


PROPERTY_TYPE_ALIASES = {
    "string": "string",
    "str": "string",
    "number": "number",
    "integer": "number",
    "boolean": "boolean",
    "bool": "boolean",
    "date": "date",
    "datetime": "date",
    "objectid": "objectId",
    "object-id": "objectId",
    "objectId": "objectId",
    "embedded": "embedded",
    "object": "embedded",
    "array": "embedded",
    "any": "embedded",
}

RelationType = Literal["belongsTo", "hasOne", "hasMany", "hasAndBelongsToMany"]

SINGLE_RELATION_TYPES = ("belongsTo", "hasOne")


def _dashed(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", name).lower()


def lower_first(name: str) -> str:
    return name[:1].lower() + name[1:]


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PropertyDef(_ConfigModel):
    """Definition of a model property."""
    type: str = "embedded"
    required: bool = False
    default: Any = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        if value is None:
            return "embedded"
        normalized = PROPERTY_TYPE_ALIASES.get(str(value)) or PROPERTY_TYPE_ALIASES.get(str(value).lower())
        if normalized is None:
            raise ValueError(f"unknown property type '{value}'")
        return normalized


class RelationOptions(_ConfigModel):
    skip_auth: bool = Field(default=False, alias="skipAuth")


class RelationDef(_ConfigModel):
    """
    Definition of a relation between models.

    Keys are optional; the compiler derives defaults from the relation kind:
    belongsTo joins ``<relation>Id`` to ``_id``, hasOne/hasMany join ``_id``
    to ``<lowerFirst(parent)>Id``.
    """
    type: RelationType
    model: str
    primary_key: Optional[str] = Field(default=None, alias="primaryKey")
    foreign_key: Optional[str] = Field(default=None, alias="foreignKey")
    through: Optional[str] = None
    options: RelationOptions = Field(default_factory=RelationOptions)

    @property
    def is_single(self) -> bool:
        return self.type in SINGLE_RELATION_TYPES


class AclRule(_ConfigModel):
    """A single ACL rule, evaluated by the authorizer."""
    access_type: Literal["READ", "WRITE", "EXECUTE", "*"] = Field(default="*", alias="accessType")
    principal_type: Literal["ROLE", "USER"] = Field(default="ROLE", alias="principalType")
    principal_id: str = Field(alias="principalId")
    permission: Literal["ALLOW", "DENY"]
    property: str = "*"


class CacheDef(_ConfigModel):
    """Cache policy: which datasource holds entries and which key groups index them."""
    datasource: str
    ttl: int = 0
    keys: list[list[str]] = Field(default_factory=list)


class MongoOptions(_ConfigModel):
    collection: Optional[str] = None


class ModelConfig(_ConfigModel):
    """Declarative definition of a model."""
    name: str
    plural: Optional[str] = None
    base: str = "PersistedModel"
    public: bool = True
    properties: dict[str, PropertyDef] = Field(default_factory=dict)
    relations: dict[str, RelationDef] = Field(default_factory=dict)
    hidden: list[str] = Field(default_factory=list)
    acls: list[AclRule] = Field(default_factory=list)
    cache: Optional[CacheDef] = None
    mongo: Optional[MongoOptions] = None
    data_source: str = Field(default="db", alias="dataSource")

    @field_validator("properties", mode="before")
    @classmethod
    def _expand_shorthand(cls, value: Any) -> Any:
        # {"title": "string"} is shorthand for {"title": {"type": "string"}}
        if isinstance(value, dict):
            return {
                key: {"type": prop} if isinstance(prop, str) else prop
                for key, prop in value.items()
            }
        return value

    @model_validator(mode="after")
    def _default_plural(self) -> ModelConfig:
        if not self.plural:
            self.plural = _dashed(self.name) + "s"
        return self

    @property
    def collection(self) -> str:
        if self.mongo and self.mongo.collection:
            return self.mongo.collection
        return self.name


class DataSourceConfig(_ConfigModel):
    """
    Definition of a datasource.

    ``documentStore`` (alias ``mongodb``) is backed by MongoDB, ``memorykv``
    by the in-process KV store, ``redis`` by a Redis server.
    """
    name: str = "db"
    connector: str
    url: Optional[str] = None
    host: str = "localhost"
    port: Optional[int] = None
    database: str = ""
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = 30.0
    ping_interval: float = Field(default=5.0, alias="pingInterval")
    reconnect_attempts: int = Field(default=2, alias="reconnectAttempts")
    min_pool_size: int = Field(default=1, alias="minPoolSize")
    max_pool_size: int = Field(default=5, alias="maxPoolSize")
