"""Serializers for exporting a filtered event window."""

from __future__ import annotations

import csv
import io
import json
from enum import Enum
from typing import Any, Iterable, Sequence

from core.exceptions import ValidationError


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


CONTENT_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
}


def parse_format(value: str | ExportFormat) -> ExportFormat:
    try:
        return ExportFormat(str(getattr(value, "value", value)).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unsupported export format: '{value}'. Use 'json' or 'csv'."
        ) from None


def render_json(records: Iterable[dict[str, Any]]) -> str:
    """Pretty-printed JSON array."""
    return json.dumps(list(records), indent=2, default=str)


def render_csv(columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Header line plus one line per row.

    Fields containing commas, quotes or newlines are quoted. ``None``
    renders as an empty field.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue().rstrip("\n")
