"""
Partial-update merging for book records.

A PATCH body may carry any subset of the book fields. Only the fields that
pass the configured filter end up in the ``SET`` clause of a single
``UPDATE ... RETURNING`` statement:

- ``truthy``: a field is kept only when its value is truthy, so ``0``,
  ``0.0`` and ``""`` are dropped just like an omitted field.
- ``present``: a field is kept whenever the caller supplied it with a
  non-null value, which allows zeroing ``stock`` or ``price``.
"""

from typing import Any, Dict

from sqlalchemy import Table, update
from sqlalchemy.sql.dml import Update

from api.models import BookPatch

PATCHABLE_FIELDS = ("title", "author", "genre", "price", "stock")

TRUTHY = "truthy"
PRESENT = "present"


def parse_patch(raw: Dict[str, Any], field_filter: str = TRUTHY) -> BookPatch:
    """
    Validate a raw PATCH body.

    In ``truthy`` mode falsy values are discarded before type validation,
    so ``{"price": "", "stock": 3}`` patches the stock alone instead of
    failing on the empty price.

    Raises:
        pydantic.ValidationError: If a kept value has the wrong type
    """
    if field_filter == TRUTHY:
        raw = {name: value for name, value in raw.items() if value}
    return BookPatch.model_validate(raw)


def collect_update_fields(patch: BookPatch, field_filter: str = TRUTHY) -> Dict[str, Any]:
    """
    Pick the fields of a PATCH body that should be written.

    Args:
        patch: Parsed PATCH body
        field_filter: ``truthy`` or ``present``

    Returns:
        Mapping of column name to new value, in column order. Empty when
        nothing qualifies.
    """
    if field_filter not in (TRUTHY, PRESENT):
        raise ValueError(f"Unknown patch field filter: {field_filter}")

    supplied = patch.model_dump(exclude_unset=True)
    fields = {}
    for name in PATCHABLE_FIELDS:
        if name not in supplied:
            continue
        value = supplied[name]
        if field_filter == TRUTHY:
            keep = bool(value)
        else:
            keep = value is not None
        if keep:
            fields[name] = value
    return fields


def build_patch_statement(table: Table, book_id: int, fields: Dict[str, Any]) -> Update:
    """
    Build the ``UPDATE`` touching only ``fields`` for the row ``book_id``.

    Values are bound parameters; column names come from the table, never
    from the request.
    """
    if not fields:
        raise ValueError("No fields to update")

    unknown = set(fields) - set(PATCHABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be patched: {sorted(unknown)}")

    values = {table.c[name]: value for name, value in fields.items()}
    return (
        update(table)
        .where(table.c.id == book_id)
        .values(values)
        .returning(*table.c)
    )
