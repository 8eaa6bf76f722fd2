"""Turn uploaded or fetched tabular bytes into ordered headers and typed rows.

CSV content goes through the standard ``csv`` reader with literal type
inference. Spreadsheet content keeps whatever types the workbook encodes:
``.xlsx`` files are read with openpyxl, legacy ``.xls`` files through pandas'
``xlrd`` engine. In every case the header row is the first non-blank row and
only the first worksheet is considered; both are explicit ``ParserConfig``
fields rather than hidden defaults.
"""

from __future__ import annotations

import csv
import io
import math
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from pathlib import PurePath
from typing import TypeAlias
from zipfile import BadZipFile

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from xlrd import XLRDError

from dataset_ingest.services.errors import EmptyDataset, UnsupportedFormat

CellValue: TypeAlias = str | int | float | bool
Row: TypeAlias = dict[str, CellValue]

EMPTY_VALUE: CellValue = ""
SUPPORTED_FORMATS: tuple[str, ...] = ("csv", "xlsx", "xls")

# Integers past 2**53 lose precision once they round-trip through JSON numbers.
_MAX_SAFE_INTEGER = 2**53
_NUMBER_PATTERN = re.compile(r"^\s*-?(\d+\.?|\.\d+|\d+\.\d+)([eE][-+]?\d+)?\s*$")
_INTEGER_PATTERN = re.compile(r"^\s*-?\d+\s*$")
_TRUE_LITERALS = frozenset({"true", "TRUE"})
_FALSE_LITERALS = frozenset({"false", "FALSE"})


@dataclass(frozen=True)
class ParserConfig:
    sheet_index: int = 0
    header_row: int = 0
    infer_types: bool = True
    skip_blank_rows: bool = True
    encoding: str = "utf-8-sig"
    delimiter: str = ","


DEFAULT_PARSER_CONFIG = ParserConfig()


@dataclass(frozen=True)
class ParsedTable:
    headers: list[str]
    rows: list[Row] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def normalize_format(format_hint: str) -> str:
    hint = (format_hint or "").strip().lower().lstrip(".")
    if hint not in SUPPORTED_FORMATS:
        raise UnsupportedFormat(
            f"Unsupported file format '{format_hint}'. Only CSV and Excel files are allowed."
        )
    return hint


def format_from_filename(file_name: str) -> str:
    suffix = PurePath(file_name or "").suffix
    if not suffix:
        raise UnsupportedFormat(f"Cannot determine file format for '{file_name}'.")
    return normalize_format(suffix)


def parse(
    data: bytes,
    format_hint: str,
    config: ParserConfig | None = None,
) -> ParsedTable:
    """Parse raw bytes into a ``ParsedTable``.

    Raises ``UnsupportedFormat`` for unknown hints or unreadable content and
    ``EmptyDataset`` when no header or no data row survives parsing.
    """
    fmt = normalize_format(format_hint)
    options = config or DEFAULT_PARSER_CONFIG

    if fmt == "csv":
        records = _read_csv_records(data, options)
        convert: Callable[[object], CellValue] = (
            _infer_csv_value if options.infer_types else _plain_csv_value
        )
    elif fmt == "xlsx":
        records = _read_xlsx_records(data, options)
        convert = _spreadsheet_value
    else:
        records = _read_xls_records(data, options)
        convert = _spreadsheet_value

    table = _build_table(records, options, convert)
    if not table.headers:
        raise EmptyDataset("File has no header row.")
    if not table.rows:
        raise EmptyDataset("File is empty or has no data rows.")
    return table


# ---- readers ----
def _read_csv_records(data: bytes, options: ParserConfig) -> list[list[object]]:
    try:
        text = data.decode(options.encoding)
    except UnicodeDecodeError as error:
        raise UnsupportedFormat(f"CSV content is not valid {options.encoding}: {error}") from error
    try:
        reader = csv.reader(io.StringIO(text, newline=""), delimiter=options.delimiter)
        return [list(record) for record in reader]
    except csv.Error as error:
        raise UnsupportedFormat(f"CSV parse error: {error}") from error


def _read_xlsx_records(data: bytes, options: ParserConfig) -> list[list[object]]:
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, ValueError, OSError) as error:
        raise UnsupportedFormat(f"Excel parse error: {error}") from error
    try:
        if options.sheet_index >= len(workbook.worksheets):
            raise EmptyDataset("Workbook has no sheet to read.")
        worksheet = workbook.worksheets[options.sheet_index]
        return [list(values) for values in worksheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_xls_records(data: bytes, options: ParserConfig) -> list[list[object]]:
    try:
        frame = pd.read_excel(
            io.BytesIO(data),
            sheet_name=options.sheet_index,
            header=None,
            dtype=object,
            engine="xlrd",
            na_filter=False,
        )
    except IndexError as error:
        raise EmptyDataset("Workbook has no sheet to read.") from error
    except (XLRDError, ValueError, OSError) as error:
        raise UnsupportedFormat(f"Excel parse error: {error}") from error
    return frame.values.tolist()


# ---- table assembly ----
def _build_table(
    records: Sequence[Sequence[object]],
    options: ParserConfig,
    convert: Callable[[object], CellValue],
) -> ParsedTable:
    if options.skip_blank_rows:
        records = [record for record in records if not _is_blank(record)]
    if len(records) <= options.header_row:
        return ParsedTable(headers=[], rows=[])

    positions, headers = _normalize_headers(records[options.header_row])
    rows: list[Row] = []
    for record in records[options.header_row + 1 :]:
        row: Row = {}
        for position, header in zip(positions, headers):
            raw = record[position] if position < len(record) else None
            row[header] = convert(raw)
        rows.append(row)
    return ParsedTable(headers=headers, rows=rows)


def _normalize_headers(cells: Iterable[object]) -> tuple[list[int], list[str]]:
    positions: list[int] = []
    headers: list[str] = []
    seen: set[str] = set()
    for position, cell in enumerate(cells):
        name = _header_text(cell).strip()
        if not name:
            continue
        candidate = name
        counter = 1
        while candidate in seen:
            candidate = f"{name}_{counter}"
            counter += 1
        seen.add(candidate)
        positions.append(position)
        headers.append(candidate)
    return positions, headers


def _header_text(cell: object) -> str:
    value = _spreadsheet_value(cell)
    return str(value) if not isinstance(value, bool) else str(value).lower()


def _is_blank(record: Sequence[object]) -> bool:
    for cell in record:
        if cell is None:
            continue
        if isinstance(cell, str) and not cell.strip():
            continue
        if isinstance(cell, float) and math.isnan(cell):
            continue
        return False
    return True


# ---- cell conversion ----
def _plain_csv_value(raw: object) -> CellValue:
    if raw is None:
        return EMPTY_VALUE
    text = str(raw)
    return text if text.strip() else EMPTY_VALUE


def _infer_csv_value(raw: object) -> CellValue:
    if raw is None:
        return EMPTY_VALUE
    text = str(raw)
    if not text.strip():
        return EMPTY_VALUE
    if text in _TRUE_LITERALS:
        return True
    if text in _FALSE_LITERALS:
        return False
    if _NUMBER_PATTERN.match(text):
        if _INTEGER_PATTERN.match(text):
            number = int(text)
            return number if abs(number) <= _MAX_SAFE_INTEGER else text
        value = float(text)
        return value if math.isfinite(value) else text
    return text


def _spreadsheet_value(raw: object) -> CellValue:
    if raw is None:
        return EMPTY_VALUE
    if isinstance(raw, (datetime, date, time)):
        return raw.isoformat()
    if isinstance(raw, timedelta):
        return str(raw)
    if hasattr(raw, "item") and not isinstance(raw, (str, bytes)):
        # numpy scalars from the pandas reader
        raw = raw.item()
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if math.isnan(raw):
            return EMPTY_VALUE
        if raw.is_integer() and abs(raw) <= _MAX_SAFE_INTEGER:
            return int(raw)
        return raw
    text = str(raw)
    return text if text.strip() else EMPTY_VALUE
