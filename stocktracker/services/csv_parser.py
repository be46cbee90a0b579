"""
CSV parsing for transaction uploads.

Turns raw upload content into an ordered header list plus 1-based,
header-keyed rows. Structure problems (no header, ragged rows, broken
quoting) are reported before any row is looked at.
"""

import csv
import logging
from dataclasses import dataclass, field
from io import StringIO
from typing import Dict, List, Optional, Union

import pandas as pd

from stocktracker.config import settings
from stocktracker.exceptions import (
    EmptyFileError,
    FileTooLargeError,
    MalformedCsvError,
    TooManyRowsError,
)

logger = logging.getLogger(__name__)


@dataclass
class CsvRowData:
    """One uploaded data row; row_number counts data rows from 1."""
    row_number: int
    values: Dict[str, str] = field(default_factory=dict)

    def get(self, header: Optional[str]) -> Optional[str]:
        if header is None:
            return None
        return self.values.get(header)


@dataclass
class ParsedCsv:
    headers: List[str]
    rows: List[CsvRowData]


def _decode(content: Union[bytes, str], max_bytes: int) -> str:
    if isinstance(content, bytes):
        size = len(content)
    else:
        size = len(content.encode("utf-8"))
    if size > max_bytes:
        raise FileTooLargeError(
            f"File is too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
            details={"maxSize": max_bytes},
        )

    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise MalformedCsvError(f"File is not valid UTF-8 text: {e}")

    return content.lstrip("\ufeff")


def _is_blank(record) -> bool:
    return all(pd.isna(cell) or not str(cell).strip() for cell in record)


def parse_csv(
    content: Union[bytes, str],
    max_rows: Optional[int] = None,
    max_bytes: Optional[int] = None,
) -> ParsedCsv:
    """
    Parse uploaded CSV content.

    Raises:
        FileTooLargeError: content exceeds ``max_bytes``
        MalformedCsvError: no header, ragged rows, quoting errors
        EmptyFileError: header but no data rows
        TooManyRowsError: more than ``max_rows`` data rows
    """
    max_rows = max_rows or settings.max_import_rows
    max_bytes = max_bytes or settings.max_upload_size

    text = _decode(content, max_bytes)
    if not text.strip():
        raise MalformedCsvError("CSV file has no header row")

    # The python engine sizes columns from the header line: longer rows raise,
    # shorter rows are padded with NaN while real empty cells stay "".
    try:
        df = pd.read_csv(
            StringIO(text),
            engine="python",
            header=None,
            dtype=str,
            na_filter=False,
            on_bad_lines="error",
        )
    except pd.errors.EmptyDataError:
        raise MalformedCsvError("CSV file has no header row")
    except (pd.errors.ParserError, csv.Error) as e:
        raise MalformedCsvError(f"Malformed CSV: {e}")

    records = [
        list(record) for record in df.itertuples(index=False, name=None)
        if not _is_blank(record)
    ]

    if not records:
        raise MalformedCsvError("CSV file has no header row")

    headers = [h.strip() for h in records[0]]
    for position, header in enumerate(headers, start=1):
        if header == "":
            raise MalformedCsvError(f"Column {position} has an empty header")
    duplicates = sorted({h for h in headers if headers.count(h) > 1})
    if duplicates:
        raise MalformedCsvError(f"Duplicate column headers: {', '.join(duplicates)}")

    data = records[1:]
    if not data:
        raise EmptyFileError("CSV file contains no data rows")
    if len(data) > max_rows:
        raise TooManyRowsError(
            f"CSV file has {len(data)} rows. Maximum is {max_rows} rows",
            details={"rowCount": len(data), "maxRows": max_rows},
        )

    rows = []
    for row_number, record in enumerate(data, start=1):
        missing = sum(1 for cell in record if pd.isna(cell))
        if missing:
            raise MalformedCsvError(
                f"Row {row_number} has {len(record) - missing} fields, expected {len(headers)}",
                details={"rowNumber": row_number},
            )
        rows.append(CsvRowData(row_number=row_number, values=dict(zip(headers, record))))

    logger.info(f"[CsvParser] Parsed {len(rows)} rows with {len(headers)} columns")
    return ParsedCsv(headers=headers, rows=rows)
