"""
Shared validation helpers for MemoryRouter services.
"""

from __future__ import annotations

from typing import Optional, Sequence

from core.config import (
    MAX_EMBEDDING_TEXT_LENGTH,
    MAX_SHORT_TEXT_LENGTH,
    PRIORITIES,
    RETENTIONS,
    SEARCH_MODES,
)
from core.errors import InvalidInput


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise InvalidInput(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise InvalidInput(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_owner_id(value: str) -> None:
    validate_required_text(value, "owner_id", MAX_SHORT_TEXT_LENGTH)


def validate_limit(value: int, field: str, max_value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value <= 0 or value > max_value:
        raise InvalidInput(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_unit_interval(value: float, field: str) -> None:
    if value < 0.0 or value > 1.0:
        raise InvalidInput(f"{field} must be between 0.0 and 1.0", field=field, error_type="out_of_range")


def validate_choice(value: str, field: str, choices: Sequence[str]) -> None:
    if value not in choices:
        raise InvalidInput(
            f"{field} must be one of: {', '.join(choices)}",
            field=field,
            error_type="invalid_choice",
            data={"allowed": list(choices)},
        )


def validate_search_mode(value: str) -> None:
    validate_choice(value, "mode", SEARCH_MODES)


def validate_priority(value: str) -> None:
    validate_choice(value, "priority", PRIORITIES)


def validate_retention(value: str) -> None:
    validate_choice(value, "retention", RETENTIONS)


def validate_string_list(
    values: Optional[Sequence[str]],
    field: str,
    max_items: int,
    max_item_length: int,
) -> None:
    if values is None:
        return
    if isinstance(values, str):
        raise InvalidInput(f"{field} must be a list of strings", field=field, error_type="invalid_type")
    if len(values) > max_items:
        raise InvalidInput(f"{field} exceeds max items {max_items}", field=field, error_type="max_items")
    for item in values:
        if not isinstance(item, str):
            raise InvalidInput(f"{field} must contain only strings", field=field, error_type="invalid_type")
        if len(item) > max_item_length:
            raise InvalidInput(
                f"{field} item exceeds max length {max_item_length}",
                field=field,
                error_type="max_length",
            )


def validate_embedding_text(text: str) -> None:
    validate_required_text(text, "text", MAX_EMBEDDING_TEXT_LENGTH)
