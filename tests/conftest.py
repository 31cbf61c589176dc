"""
Shared fixtures: a small blog schema over a fake document store and the
in-process KV cache.
"""

from datetime import datetime, timezone

import pytest

from modelstack.core.defs import DataSourceConfig, ModelConfig
from modelstack.core.registry import ModelRegistry
from modelstack.datasource.memorykv import MemoryKVConnector
from tests.fakes import FakeDocumentConnector

FIXED_NOW = datetime(2024, 3, 15, 12, 30, 0, tzinfo=timezone.utc)

EVERYONE_ALLOW = [{"principalType": "ROLE", "principalId": "$everyone", "permission": "ALLOW"}]


def blog_model_configs() -> list[dict]:
    return [
        {
            "name": "User",
            "properties": {
                "name": {"type": "string", "required": True},
                "email": "string",
                "password": "string",
            },
            "hidden": ["password"],
            "relations": {
                "notes": {"type": "hasMany", "model": "Note", "foreignKey": "authorId"},
                "profile": {"type": "hasOne", "model": "Profile"},
            },
            "acls": EVERYONE_ALLOW,
        },
        {
            "name": "Note",
            "properties": {
                "title": {"type": "string", "required": True},
                "status": {"type": "string", "default": "draft"},
                "views": "number",
                "createdAt": "date",
                "authorId": "objectId",
            },
            "relations": {
                "author": {"type": "belongsTo", "model": "User"},
                "tags": {"type": "hasAndBelongsToMany", "model": "Tag"},
            },
            "acls": EVERYONE_ALLOW,
        },
        {
            "name": "Tag",
            "properties": {"name": "string"},
            "acls": EVERYONE_ALLOW,
        },
        {
            "name": "Profile",
            "properties": {"bio": "string", "userId": "objectId"},
            "relations": {"user": {"type": "belongsTo", "model": "User"}},
            "acls": EVERYONE_ALLOW,
        },
        {
            "name": "Account",
            "properties": {"email": "string", "plan": "string"},
            "cache": {"datasource": "cache", "ttl": 60, "keys": [["_id"], ["email"]]},
            "acls": EVERYONE_ALLOW,
        },
    ]


@pytest.fixture
def db():
    return FakeDocumentConnector("db")


@pytest.fixture
def kv():
    connector = MemoryKVConnector(DataSourceConfig(name="cache", connector="memorykv"))
    yield connector
    connector.database.purge()


@pytest.fixture
def registry(db, kv):
    registry = ModelRegistry({"db": db, "cache": kv}, clock=lambda: FIXED_NOW)
    registry.load(ModelConfig.model_validate(config) for config in blog_model_configs())
    registry.resolve()
    return registry
