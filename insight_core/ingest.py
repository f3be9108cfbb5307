from __future__ import annotations

import io
import json
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)

RawRow = Dict[str, object]
Blob = Union[bytes, bytearray, memoryview, str]

SUPPORTED_FORMATS = ("csv", "xlsx", "xls", "json")
FORMAT_ALIASES = {
    "txt": "csv",
    "text/csv": "csv",
    "application/csv": "csv",
    "application/json": "json",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-excel": "xls",
}
ZIP_MAGIC = b"PK\x03\x04"
OLE_MAGIC = b"\xd0\xcf\x11\xe0"
DEFAULT_SHEET_NAME = "Sheet1"


class IngestErrorKind(str, Enum):
    PARSE_FAILURE = "parse_failure"
    EMPTY_DATASET = "empty_dataset"
    UNSUPPORTED_FORMAT = "unsupported_format"


class IngestError(Exception):
    """Raised when a blob cannot be turned into rows."""

    def __init__(self, kind: IngestErrorKind, detail: str = "") -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.kind.value, "detail": self.detail}


@dataclass(frozen=True)
class Sheet:
    name: str
    columns: Tuple[str, ...]
    rows: Tuple[RawRow, ...]

    @property
    def is_empty(self) -> bool:
        return not self.rows


@dataclass(frozen=True)
class IngestResult:
    format: str
    sheets: Tuple[Sheet, ...]

    @property
    def sheet_names(self) -> List[str]:
        return [s.name for s in self.sheets]

    def select(self, names: Optional[Sequence[str]] = None) -> Sheet:
        """Return the active sheet: the first requested name that exists, else the first sheet."""
        by_name = {s.name: s for s in self.sheets}
        chosen: Optional[Sheet] = None
        for name in names or []:
            if name in by_name:
                chosen = by_name[name]
                break
        if chosen is None:
            if names:
                logger.warning("None of the requested sheets %s exist; using '%s'", list(names), self.sheets[0].name)
            chosen = self.sheets[0]
        if chosen.is_empty:
            raise IngestError(IngestErrorKind.EMPTY_DATASET, f"Sheet '{chosen.name}' has no data rows.")
        return chosen


def _canonical_format(value: str) -> str:
    fmt = value.strip().lower().lstrip(".")
    return FORMAT_ALIASES.get(fmt, fmt)


def detect_format(blob: Blob, declared_format: Optional[str] = None, filename: Optional[str] = None) -> str:
    if declared_format:
        fmt = _canonical_format(declared_format)
        if fmt not in SUPPORTED_FORMATS:
            raise IngestError(IngestErrorKind.UNSUPPORTED_FORMAT, f"Unsupported format '{declared_format}'.")
        return fmt

    if filename:
        ext = Path(filename).suffix
        if ext:
            fmt = _canonical_format(ext)
            if fmt not in SUPPORTED_FORMATS:
                raise IngestError(IngestErrorKind.UNSUPPORTED_FORMAT, f"Unsupported file type '{ext}'.")
            return fmt

    if isinstance(blob, str):
        head_text = blob.lstrip()[:1]
    else:
        head = bytes(blob[:8])
        if head.startswith(ZIP_MAGIC):
            return "xlsx"
        if head.startswith(OLE_MAGIC):
            return "xls"
        head_text = bytes(blob[:64]).lstrip(b"\xef\xbb\xbf \t\r\n")[:1].decode("latin-1")
    return "json" if head_text == "[" else "csv"


def _decode(blob: Blob) -> str:
    if isinstance(blob, str):
        return blob
    try:
        return bytes(blob).decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise IngestError(IngestErrorKind.PARSE_FAILURE, "Text must be UTF-8 encoded.") from exc


def _scalar(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (pd.Timestamp, datetime, date)):
        if pd.isna(value):
            return None
        return value.isoformat()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _frame_to_sheet(df: pd.DataFrame, name: str) -> Sheet:
    columns = tuple(str(c) for c in df.columns)
    rows = tuple(
        {col: _scalar(val) for col, val in zip(columns, values)}
        for values in df.itertuples(index=False, name=None)
    )
    return Sheet(name=name, columns=columns, rows=rows)


def _read_csv(blob: Blob, sheet_name: str) -> Sheet:
    text = _decode(blob).strip()
    if not text:
        raise IngestError(IngestErrorKind.EMPTY_DATASET, "CSV is empty.")
    try:
        # index_col=False keeps a trailing delimiter from shifting the header onto an index
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
        )
    except pd.errors.EmptyDataError as exc:
        raise IngestError(IngestErrorKind.EMPTY_DATASET, "CSV has no header row.") from exc
    except (pd.errors.ParserError, ValueError) as exc:
        raise IngestError(IngestErrorKind.PARSE_FAILURE, f"Invalid CSV format: {exc}") from exc
    # short rows leave NaN behind even with keep_default_na=False
    df = df.fillna("")
    return _frame_to_sheet(df, sheet_name)


def _read_workbook(blob: Blob) -> Tuple[Sheet, ...]:
    if isinstance(blob, str):
        raise IngestError(IngestErrorKind.PARSE_FAILURE, "Spreadsheets must be supplied as binary data.")
    try:
        book: Dict[str, pd.DataFrame] = pd.read_excel(io.BytesIO(bytes(blob)), sheet_name=None)
    except Exception as exc:
        raise IngestError(IngestErrorKind.PARSE_FAILURE, f"Could not read spreadsheet: {exc}") from exc
    if not book:
        raise IngestError(IngestErrorKind.EMPTY_DATASET, "Workbook has no sheets.")
    return tuple(_frame_to_sheet(df, str(name)) for name, df in book.items())


def _union_keys(items: Iterable[dict]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for item in items:
        for key in item:
            seen.setdefault(str(key), None)
    return tuple(seen)


def _read_json(blob: Blob, sheet_name: str) -> Sheet:
    text = _decode(blob)
    if not text.strip():
        raise IngestError(IngestErrorKind.EMPTY_DATASET, "JSON document is empty.")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise IngestError(IngestErrorKind.PARSE_FAILURE, f"Invalid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise IngestError(IngestErrorKind.PARSE_FAILURE, "JSON input must be an array of objects.")
    if any(not isinstance(item, dict) for item in payload):
        raise IngestError(IngestErrorKind.PARSE_FAILURE, "Every JSON array element must be an object.")
    columns = _union_keys(payload)
    rows = tuple({col: _scalar(item.get(col)) for col in columns} for item in payload)
    return Sheet(name=sheet_name, columns=columns, rows=rows)


def ingest(blob: Blob, declared_format: Optional[str] = None, *, filename: Optional[str] = None) -> IngestResult:
    """Parse a CSV / spreadsheet / JSON blob into sheets of raw rows.

    Raises IngestError for unreadable input, unsupported formats or datasets
    without any data row.
    """
    if blob is None:
        raise IngestError(IngestErrorKind.EMPTY_DATASET, "No data supplied.")
    fmt = detect_format(blob, declared_format, filename)
    implicit_name = Path(filename).stem if filename else DEFAULT_SHEET_NAME

    if fmt == "csv":
        sheets: Tuple[Sheet, ...] = (_read_csv(blob, implicit_name),)
    elif fmt == "json":
        sheets = (_read_json(blob, implicit_name),)
    else:
        sheets = _read_workbook(blob)

    if all(s.is_empty for s in sheets):
        raise IngestError(IngestErrorKind.EMPTY_DATASET, "Dataset has no data rows.")

    logger.info(
        "Ingested %s input: sheets=%s rows=%s",
        fmt,
        [s.name for s in sheets],
        [len(s.rows) for s in sheets],
    )
    return IngestResult(format=fmt, sheets=sheets)


def ingest_path(path: Union[str, Path], declared_format: Optional[str] = None) -> IngestResult:
    path = Path(path)
    try:
        blob = path.read_bytes()
    except OSError as exc:
        raise IngestError(IngestErrorKind.PARSE_FAILURE, f"Could not read {path.name}: {exc}") from exc
    return ingest(blob, declared_format, filename=path.name)
