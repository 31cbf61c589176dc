"""
Pydantic models for the declarative filter.

Example:
{
    "where": {"status": "active", "createdAt": {"$gte": "$7dago"}},
    "include": [{"relation": "author", "scope": {"where": {"active": true}}}],
    "order": ["createdAt DESC"],
    "skip": 0,
    "limit": 20
}
"""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .coercion import json_default
from .errors import InvalidFilterError


class IncludeItem(BaseModel):
    """One include directive; ``filter`` is accepted as an alias of ``scope``."""
    model_config = ConfigDict(populate_by_name=True)

    relation: str
    scope: Optional[Filter] = Field(
        default=None,
        validation_alias=AliasChoices("scope", "filter"),
    )


class Filter(BaseModel):
    """Declarative query: where / include / order / skip / limit."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    where: Optional[dict[str, Any]] = None
    include: list[IncludeItem] = Field(default_factory=list)
    order: list[str] = Field(default_factory=list)
    skip: int = 0
    limit: int = 0

    @field_validator("include", mode="before")
    @classmethod
    def _normalize_include(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, dict)):
            value = [value]
        return [{"relation": item} if isinstance(item, str) else item for item in value]

    @field_validator("order", mode="before")
    @classmethod
    def _normalize_order(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("skip", "limit", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @classmethod
    def parse(cls, raw: Union[str, bytes, dict, Filter, None]) -> Filter:
        """
        Parse a filter from JSON text, a dict, or an existing Filter.

        Raises:
            InvalidFilterError: if the JSON is malformed or the shape is wrong
        """
        if raw is None or raw == "" or raw == b"":
            return cls()
        if isinstance(raw, Filter):
            return raw
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                raise InvalidFilterError(f"invalid filter JSON: {e}")
        if not isinstance(raw, dict):
            raise InvalidFilterError("filter must be a JSON object")
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise InvalidFilterError(f"invalid filter: {e.errors(include_url=False)}")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.where is not None:
            data["where"] = self.where
        if self.include:
            data["include"] = [
                {"relation": item.relation, **({"scope": item.scope.to_dict()} if item.scope else {})}
                for item in self.include
            ]
        if self.order:
            data["order"] = list(self.order)
        if self.skip:
            data["skip"] = self.skip
        if self.limit:
            data["limit"] = self.limit
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=json_default)

    @property
    def has_include(self) -> bool:
        return bool(self.include)


IncludeItem.model_rebuild()
