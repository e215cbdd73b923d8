"""CSV parsing for bulk roster uploads.

Headers are matched to logical columns through configured aliases,
ignoring case, surrounding whitespace and ``_``/``-`` punctuation.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field, replace

from orgman.core.config import Settings
from orgman.schemas.bulk_upload import BulkUploadRow
from orgman.services.bulk_upload_errors import (
    BulkFileUnreadableError,
    BulkHeaderInvalidError,
    BulkRequiredColumnMissingError,
)
from orgman.utils.normalization import normalize_label

FIRST_ROW_NUMBER = 2  # Line 1 is the header

IDENTITY_COLUMNS = ("first_name", "last_name", "email")


@dataclass(frozen=True)
class ColumnDefinition:
    key: str
    header: str
    aliases: tuple[str, ...] = ()
    required: bool = False
    enabled: bool = True

    def match_keys(self) -> list[str]:
        """Aliases, then the header label, then the key with underscores as spaces."""
        keys: list[str] = []
        for candidate in (*self.aliases, self.header, self.key.replace("_", " ")):
            normalized = normalize_label(candidate)
            if normalized and normalized not in keys:
                keys.append(normalized)
        return keys


DEFAULT_COLUMNS: tuple[ColumnDefinition, ...] = (
    ColumnDefinition("first_name", "First Name", ("first name", "firstname", "first"), True),
    ColumnDefinition("last_name", "Last Name", ("last name", "lastname", "last"), True),
    ColumnDefinition("email", "Email Address", ("email address", "email", "e-mail"), True),
    ColumnDefinition(
        "relationship_type", "Relationship Type", ("relationship type", "relationship"), True
    ),
    ColumnDefinition("roles", "Roles", ("roles", "permissions", "role"), False),
)


@dataclass
class ParsedUpload:
    headers: list[str]
    column_index: dict[str, int]
    rows: list[BulkUploadRow] = field(default_factory=list)


def get_column_definitions(cfg: Settings) -> list[ColumnDefinition]:
    """Default columns with BULK_UPLOAD_COLUMNS overrides applied."""
    columns = []
    for column in DEFAULT_COLUMNS:
        override = cfg.BULK_UPLOAD_COLUMNS.get(column.key) or {}
        updates: dict = {}
        if "header" in override:
            updates["header"] = str(override["header"])
        if "aliases" in override:
            updates["aliases"] = tuple(str(alias) for alias in override["aliases"] or ())
        if "required" in override:
            updates["required"] = bool(override["required"])
        if "enabled" in override:
            updates["enabled"] = bool(override["enabled"])
        if column.key == "relationship_type" and "required" not in override:
            updates["required"] = cfg.BULK_UPLOAD_RELATIONSHIP_REQUIRED
        if column.key in IDENTITY_COLUMNS:
            updates["required"] = True
            updates["enabled"] = True
        columns.append(replace(column, **updates))
    return columns


def decode_upload(file_content: bytes | str) -> str:
    if isinstance(file_content, str):
        return file_content
    try:
        return file_content.decode("utf-8-sig")  # Handle BOM
    except UnicodeDecodeError as exc:
        raise BulkFileUnreadableError("File must be UTF-8 encoded CSV.") from exc


def resolve_columns(headers: list[str], columns: list[ColumnDefinition]) -> dict[str, int]:
    """Map column keys to header indices; raise when a required column is missing."""
    normalized_headers = [normalize_label(header) for header in headers]
    column_index: dict[str, int] = {}
    missing: list[str] = []
    for column in columns:
        if not column.enabled:
            continue
        for key in column.match_keys():
            if key in normalized_headers:
                column_index[column.key] = normalized_headers.index(key)
                break
        if column.key not in column_index and column.required:
            missing.append(column.header)
    if missing:
        raise BulkRequiredColumnMissingError(missing)
    return column_index


def parse_bulk_upload(file_content: bytes | str, columns: list[ColumnDefinition]) -> ParsedUpload:
    """Parse an upload into row records. Fully blank rows are dropped."""
    text = decode_upload(file_content)
    try:
        records = list(csv.reader(io.StringIO(text)))
    except csv.Error as exc:
        raise BulkFileUnreadableError(f"Could not parse CSV: {exc}") from exc

    if not records or not any(cell.strip() for cell in records[0]):
        raise BulkHeaderInvalidError("The file is missing a header row.")

    headers = [cell.strip() for cell in records[0]]
    column_index = resolve_columns(headers, columns)

    def cell(record: list[str], key: str) -> str:
        index = column_index.get(key)
        if index is None or index >= len(record):
            return ""
        return record[index].strip()

    parsed = ParsedUpload(headers=headers, column_index=column_index)
    for offset, record in enumerate(records[1:]):
        first_name = cell(record, "first_name")
        last_name = cell(record, "last_name")
        email = cell(record, "email")
        if not (first_name or last_name or email):
            continue
        parsed.rows.append(
            BulkUploadRow(
                row_num=FIRST_ROW_NUMBER + offset,
                first_name=first_name,
                last_name=last_name,
                email=email,
                roles_raw=cell(record, "roles"),
                relationship_raw=cell(record, "relationship_type"),
            )
        )
    return parsed
