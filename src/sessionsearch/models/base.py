from typing import Any, Mapping, Type, TypeVar

from pydantic import BaseModel, ConfigDict

T_Model = TypeVar("T_Model", bound="RecordModel")


class FrozenModel(BaseModel):
    """Base class enforcing immutability and rejecting unknown fields."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class RecordModel(FrozenModel):
    """Adds construction from store rows."""

    @classmethod
    def from_record(cls: Type[T_Model], data: Mapping[str, Any]) -> T_Model:
        return cls.model_validate(dict(data))


def normalize_role(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError("role must be a string")
    role = value.strip().lower()
    return role or None


def blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def ensure_non_empty_text(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value
