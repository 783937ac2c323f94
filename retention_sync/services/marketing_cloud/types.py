# retention_sync/services/marketing_cloud/types.py
"""
Wire shapes for the Marketing Cloud REST API.

Field names on the wire are camelCase; the models expose snake_case
attributes and accept either form. Timestamps come back with or without a
timezone and with or without milliseconds; naive values are taken as UTC and
empty strings become None. A JSON null on a non-optional field takes the
field's default, so one sparse item never fails a whole page.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from retention_sync.models import ROOT_PARENT_SENTINEL, RetentionUnit


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def parse_api_time(value: Any) -> datetime | None:
    """Parse an API timestamp. Returns None for empty values."""
    if value is None or isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"unable to parse time string: {value}") from None

    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def default_for_null(model: type[BaseModel], v: Any, info: ValidationInfo) -> Any:
    """JSON null on a non-optional field takes the field's default."""
    if v is None:
        return model.model_fields[info.field_name].get_default(call_default_factory=True)
    return v


def is_root_parent(parent_id: str | None) -> bool:
    """True when parent_id is the remote 'no parent' marker."""
    return parent_id is None or parent_id in ("", ROOT_PARENT_SENTINEL)


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------


class AuthRequest(BaseModel):
    grant_type: str = "client_credentials"
    client_id: str
    client_secret: str
    scope: str
    account_id: str | None = None


class AuthResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    scope: str = ""
    rest_instance_url: str | None = None
    soap_instance_url: str | None = None


# -----------------------------------------------------------------------------
# Folders
# -----------------------------------------------------------------------------


class Folder(WireModel):
    """A folder (category). parent_id is "0" or "" for top-level folders."""

    id: str
    type: str = ""
    last_updated: datetime | None = None
    created_by: int = 0
    parent_id: str = ""
    name: str = ""
    description: str = ""
    icon_type: str = ""

    @field_validator("id", "parent_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("last_updated", mode="before")
    @classmethod
    def parse_time(cls, v: Any) -> datetime | None:
        return parse_api_time(v)

    @field_validator("type", "created_by", "name", "description", "icon_type", mode="before")
    @classmethod
    def none_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        return default_for_null(cls, v, info)

    @property
    def is_top_level(self) -> bool:
        return is_root_parent(self.parent_id)


class FoldersResponse(WireModel):
    start_index: int = 0
    items_per_page: int = 0
    total_results: int = 0
    entry: list[Folder] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def none_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        return default_for_null(cls, v, info)


# -----------------------------------------------------------------------------
# Data extensions
# -----------------------------------------------------------------------------


class RetentionConfig(WireModel):
    """Retention block, as stored on a data extension and as pushed back."""

    data_retention_period_length: int = 0
    data_retention_period_unit_of_measure: int = 0
    is_delete_at_end_of_retention_period: bool = False
    is_row_based_retention: bool = False
    is_reset_retention_period_on_import: bool = False

    @field_validator("*", mode="before")
    @classmethod
    def none_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        return default_for_null(cls, v, info)

    @classmethod
    def normalized(
        cls,
        period_length: int = 1,
        unit: RetentionUnit = RetentionUnit.MONTHS,
        row_based: bool = True,
        delete_at_end: bool = False,
        reset_on_import: bool = False,
    ) -> "RetentionConfig":
        return cls(
            data_retention_period_length=period_length,
            data_retention_period_unit_of_measure=int(unit),
            is_delete_at_end_of_retention_period=delete_at_end,
            is_row_based_retention=row_based,
            is_reset_retention_period_on_import=reset_on_import,
        )

    def to_wire(self) -> dict:
        return {"dataRetentionProperties": self.model_dump(by_alias=True)}


class DataExtension(WireModel):
    """A data extension as returned by the custom objects endpoint."""

    id: str
    name: str = ""
    key: str = ""
    description: str = ""
    is_active: bool = True
    is_sendable: bool = False
    sendable_custom_object_field: str | None = None
    sendable_subscriber_field: str | None = None
    is_testable: bool = False
    category_id: str
    owner_id: int = 0
    is_object_deletable: bool = True
    is_field_addition_allowed: bool = True
    is_field_modification_allowed: bool = True
    created_date: datetime | None = None
    created_by_id: int = 0
    created_by_name: str | None = None
    modified_date: datetime | None = None
    modified_by_id: int | None = None
    modified_by_name: str | None = None
    owner_name: str | None = None
    partner_api_object_type_id: int | None = None
    partner_api_object_type_name: str | None = None
    row_count: int = 0
    field_count: int = 0
    category_full_path_for_recyclebin: str | None = None
    data_retention_properties: RetentionConfig | None = None

    @field_validator("id", "category_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("created_date", "modified_date", mode="before")
    @classmethod
    def parse_time(cls, v: Any) -> datetime | None:
        return parse_api_time(v)

    @field_validator(
        "name",
        "key",
        "description",
        "is_active",
        "is_sendable",
        "is_testable",
        "owner_id",
        "is_object_deletable",
        "is_field_addition_allowed",
        "is_field_modification_allowed",
        "created_by_id",
        "row_count",
        "field_count",
        mode="before",
    )
    @classmethod
    def none_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        return default_for_null(cls, v, info)

    @property
    def in_recycle_bin(self) -> bool:
        return bool(self.category_full_path_for_recyclebin)


class DataExtensionsResponse(WireModel):
    count: int = 0
    page: int = 0
    page_size: int = 0
    items: list[DataExtension] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def none_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        return default_for_null(cls, v, info)
