"""Bar ingestion for CSV/TSV text, files and DataFrames.

Handles the export formats of MetaTrader, TradingView and generic OHLCV
dumps: the delimiter, header and date layout are detected from the content.
Every data row is validated; a single malformed row rejects the whole input
with a BarValidationError that lists each offending row.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import io
import logging
import re

import numpy as np
import pandas as pd

from engine.bars import BarArray
from engine.errors import BarValidationError, ValidationIssue

logger = logging.getLogger(__name__)

DELIMITERS = (',', '\t', ';')
LARGE_DATASET_BARS = 500_000
SYNTHETIC_START_MS = 946684800000  # 2000-01-01 00:00 UTC
SYNTHETIC_STEP_MS = 60_000

_DATE_ALIASES = ('date', 'time', 'datetime', 'date time', 'timestamp', '<date>', '<time>')
_TIME_ALIASES = ('time', '<time>')
_COLUMN_ALIASES = {
    'open': ('open', 'o', '<open>'),
    'high': ('high', 'h', '<high>'),
    'low': ('low', 'l', '<low>'),
    'close': ('close', 'c', '<close>'),
    'volume': ('volume', 'vol', 'v', '<vol>', '<tickvol>', 'tick_volume', 'tickvol'),
}

_QUOTED_RE = re.compile(r'"[^"]*"')


@dataclass
class BarParseResult:
    """Outcome of a successful parse.

    Attributes:
        bars: Validated bar arrays
        warnings: Non-fatal observations (duplicates, dataset size)
        detected_format: Short description of the detected layout
    """
    bars: BarArray
    warnings: List[str] = field(default_factory=list)
    detected_format: str = 'unknown'


def parse_timestamps(cells: pd.Series) -> pd.Series:
    """Parse date/time text cells into UTC epoch milliseconds.

    Supported:
        - unix seconds (10 digits) and milliseconds (13 digits)
        - ISO 8601 / standard: 2024-01-15T08:30:00, 2024-01-15 08:30:00
        - MT4/MT5: 2024.01.15 08:30[:00]
        - slashed or dotted day/month/year; a first field above 12 marks
          day-first (EU) order, otherwise month-first (US)

    Every layout is rewritten to ISO 8601 and parsed by pandas in one pass.

    Returns:
        Float series of milliseconds since epoch, NaN where a cell is not a date.
    """
    text = cells.astype(str).str.strip().str.strip('"\'')
    result = pd.Series(np.nan, index=cells.index, dtype=float)

    unix = text.str.fullmatch(r'\d{10,13}')
    if unix.any():
        n = text[unix].astype(np.int64)
        result[unix] = np.where(n > 1e12, n, n * 1000).astype(float)

    ymd = text.str.extract(r'^(\d{4})[.\-/](\d{1,2})[.\-/](\d{1,2})(.*)$')
    dmy = text.str.extract(r'^(\d{1,2})[.\-/](\d{1,2})[.\-/](\d{4})(.*)$')
    day_first = pd.to_numeric(dmy[0], errors='coerce') > 12

    year = ymd[0].fillna(dmy[2])
    month = ymd[1].fillna(dmy[1].where(day_first, dmy[0]))
    day = ymd[2].fillna(dmy[0].where(day_first, dmy[1]))
    rest = ymd[3].fillna(dmy[3]).str.lstrip(' T,').str.replace(r'^(\d):', r'0\1:', regex=True)

    iso = year + '-' + month.str.zfill(2) + '-' + day.str.zfill(2)
    iso = iso.where(rest == '', iso + ' ' + rest)
    stamps = pd.to_datetime(iso, format='ISO8601', utc=True, errors='coerce')

    dated = stamps.notna() & ~unix
    if dated.any():
        result[dated] = (stamps[dated] - pd.Timestamp(0, tz='UTC')) // pd.Timedelta(milliseconds=1)
    return result


def parse_timestamp(text: str) -> Optional[int]:
    """Parse one date/time cell into UTC epoch milliseconds, or None."""
    value = parse_timestamps(pd.Series([text], dtype=object)).iloc[0]
    if np.isnan(value):
        return None
    return int(value)


def detect_delimiter(first_line: str) -> str:
    """Pick the delimiter that splits the first line into the most cells.

    Quoted sections are ignored so a quoted comma never wins.
    """
    unquoted = _QUOTED_RE.sub('', first_line)
    best, best_count = ',', 0
    for delim in DELIMITERS:
        count = len(unquoted.split(delim))
        if count > best_count:
            best, best_count = delim, count
    return best


def _clean_header(cell: str) -> str:
    return cell.strip().lower().replace('"', '').replace("'", '')


def detect_columns(headers: List[str]) -> Optional[Dict[str, int]]:
    """Map column roles to indices from a header row.

    Returns:
        Dict with date/time/open/high/low/close/volume indices (-1 when
        absent), or None when the row is not a header.
    """
    lower = [_clean_header(h) for h in headers]

    def find(aliases, exclude: int = -1) -> int:
        for i, h in enumerate(lower):
            if i != exclude and h in aliases:
                return i
        return -1

    columns = {name: find(aliases) for name, aliases in _COLUMN_ALIASES.items()}
    if min(columns['open'], columns['high'], columns['low'], columns['close']) < 0:
        return None
    columns['date'] = find(_DATE_ALIASES)
    columns['time'] = find(_TIME_ALIASES, exclude=columns['date']) if columns['date'] >= 0 else -1
    return columns


def _headerless_columns(first_row: List[str]) -> Dict[str, int]:
    n = len(first_row)
    if n >= 6:
        return {'date': 0, 'time': -1, 'open': 1, 'high': 2, 'low': 3, 'close': 4, 'volume': 5}
    if n == 5:
        if parse_timestamp(first_row[0]) is not None:
            return {'date': 0, 'time': -1, 'open': 1, 'high': 2, 'low': 3, 'close': 4, 'volume': -1}
        return {'date': -1, 'time': -1, 'open': 0, 'high': 1, 'low': 2, 'close': 3, 'volume': 4}
    return {'date': -1, 'time': -1, 'open': 0, 'high': 1, 'low': 2, 'close': 3, 'volume': -1}


def _read_cells(text: str, delimiter: str) -> pd.DataFrame:
    """Tokenize delimited text into a frame of string cells.

    The first row fixes the column count: shorter rows are padded with NaN,
    longer rows are truncated.
    """
    width = pd.read_csv(
        io.StringIO(text), sep=delimiter, header=None, nrows=1, dtype=str, engine='python'
    ).shape[1]
    return pd.read_csv(
        io.StringIO(text),
        sep=delimiter,
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
        skip_blank_lines=False,
        engine='python',
        on_bad_lines=lambda fields: fields[:width],
    )


def _check_ranges(
    time: np.ndarray,
    open_: np.ndarray,
    high: np.ndarray,
    low: np.ndarray,
    close: np.ndarray,
    volume: np.ndarray,
    rows: List[int],
) -> List[ValidationIssue]:
    """Vectorized range and ordering checks over already-numeric rows."""
    issues: List[ValidationIssue] = []
    if len(time) == 0:
        return issues

    finite = (
        np.isfinite(open_) & np.isfinite(high) & np.isfinite(low)
        & np.isfinite(close) & np.isfinite(volume)
    )
    for i in np.flatnonzero(~finite):
        issues.append(ValidationIssue("non-finite price or volume", rows[i]))

    with np.errstate(invalid='ignore'):
        checks = (
            (high < low, "high", "high is below low"),
            (high < np.maximum(open_, close), "high", "high is below open/close"),
            (low > np.minimum(open_, close), "low", "low is above open/close"),
            (volume < 0, "volume", "volume is negative"),
        )
    for mask, field_name, message in checks:
        for i in np.flatnonzero(mask & finite):
            issues.append(ValidationIssue(message, rows[i], field_name))

    backwards = np.flatnonzero(np.diff(time) < 0) + 1
    for i in backwards:
        issues.append(ValidationIssue(
            f"timestamp {int(time[i])} is earlier than the previous row", rows[i], "time"
        ))
    return issues


def _finish(
    time: np.ndarray,
    open_: np.ndarray,
    high: np.ndarray,
    low: np.ndarray,
    close: np.ndarray,
    volume: np.ndarray,
    rows: List[int],
    issues: List[ValidationIssue],
    detected_format: str,
) -> BarParseResult:
    issues = issues + _check_ranges(time, open_, high, low, close, volume, rows)
    if issues:
        issues.sort(key=lambda issue: issue.row if issue.row is not None else -1)
        logger.debug(f"Rejecting bar input: {len(issues)} issue(s)")
        raise BarValidationError(f"Rejected {len(issues)} invalid bar value(s)", issues)
    if len(time) == 0:
        raise BarValidationError("no valid bars parsed")

    warnings: List[str] = []
    dupes = int(np.count_nonzero(np.diff(time) == 0))
    if dupes:
        warnings.append(f"Found {dupes} duplicate timestamps")
    if len(time) > LARGE_DATASET_BARS:
        warnings.append(f"Large dataset: {len(time)} bars. Performance may be affected.")
    for message in warnings:
        logger.warning(message)

    bars = BarArray(time=time, open=open_, high=high, low=low, close=close, volume=volume)
    return BarParseResult(bars=bars, warnings=warnings, detected_format=detected_format)


class BarLoader:
    """Parses OHLCV text into validated bar arrays."""

    def parse_text(self, content: str) -> BarParseResult:
        """
        Parse delimited OHLCV text.

        Args:
            content: Full file content

        Returns:
            BarParseResult with validated bars

        Raises:
            BarValidationError: if the content holds no data rows or any row
                is malformed
        """
        lines = [
            (number, line)
            for number, line in enumerate(content.lstrip('\ufeff').splitlines(), start=1)
            if line.strip()
        ]
        if not lines:
            raise BarValidationError("no valid bars parsed")

        delimiter = detect_delimiter(lines[0][1])
        frame = _read_cells('\n'.join(line for _, line in lines), delimiter)
        first_row = ['' if pd.isna(cell) else str(cell) for cell in frame.iloc[0]]
        columns = detect_columns(first_row)
        has_header = columns is not None
        if not has_header:
            columns = _headerless_columns(first_row)
        offset = 1 if has_header else 0
        data = frame.iloc[offset:].reset_index(drop=True)
        rows = [number for number, _ in lines[offset:offset + len(data)]]
        logger.debug(f"Delimiter {delimiter!r}, header={has_header}, columns={columns}")

        issues: List[ValidationIssue] = []
        needed = max(columns.values()) + 1
        present = data.notna().sum(axis=1).to_numpy()
        invalid = present < needed
        for pos in np.flatnonzero(invalid):
            issues.append(ValidationIssue(
                f"expected at least {needed} columns, got {int(present[pos])}", rows[pos]
            ))

        values = {}
        for name in ('open', 'high', 'low', 'close', 'volume'):
            idx = columns[name]
            if idx < 0:
                values[name] = np.zeros(len(data))
                continue
            cells = data[idx]
            parsed = pd.to_numeric(cells.str.strip(), errors='coerce').to_numpy(dtype=float)
            bad = np.isnan(parsed) & ~invalid
            for pos in np.flatnonzero(bad):
                issues.append(ValidationIssue(f"not a number: {cells.iloc[pos].strip()!r}", rows[pos], name))
            invalid |= bad
            values[name] = parsed

        if columns['date'] >= 0:
            date_text = data[columns['date']].fillna('').str.strip()
            if columns['time'] >= 0:
                date_text = date_text + ' ' + data[columns['time']].fillna('').str.strip()
            stamps = parse_timestamps(date_text).to_numpy()
            bad = np.isnan(stamps) & ~invalid
            for pos in np.flatnonzero(bad):
                issues.append(ValidationIssue(f"unparseable timestamp {date_text.iloc[pos]!r}", rows[pos], 'time'))
            invalid |= bad
        else:
            stamps = SYNTHETIC_START_MS + np.arange(len(data), dtype=float) * SYNTHETIC_STEP_MS

        keep = ~invalid
        kind = 'TSV' if delimiter == '\t' else 'CSV'
        header_text = 'with header' if has_header else 'no header'
        detected = f"{kind}, {header_text}, {int(keep.sum())} bars"

        return _finish(
            np.nan_to_num(stamps[keep]).astype(np.int64),
            values['open'][keep],
            values['high'][keep],
            values['low'][keep],
            values['close'][keep],
            values['volume'][keep],
            [rows[pos] for pos in np.flatnonzero(keep)],
            issues,
            detected,
        )

    def load(self, file_path) -> BarParseResult:
        """Read and parse a CSV/TSV file."""
        file_path = Path(file_path)
        logger.info(f"Loading bars from {file_path}")
        content = file_path.read_text(encoding='utf-8-sig')
        result = self.parse_text(content)
        logger.info(f"Loaded {len(result.bars)} bars ({result.detected_format})")
        return result


def bars_from_dataframe(df: pd.DataFrame) -> BarParseResult:
    """
    Validate an OHLCV DataFrame and convert it to bar arrays.

    The timestamp comes from a DatetimeIndex or from a time/timestamp/datetime/
    date column (datetimes or epoch milliseconds). Naive datetimes are taken
    as UTC. Column names are matched case-insensitively; volume is optional.

    Raises:
        BarValidationError: on missing columns or invalid rows (row numbers
            are 0-based positions)
    """
    lookup = {str(col).strip().lower().strip('<>'): col for col in df.columns}
    missing = [name for name in ('open', 'high', 'low', 'close') if name not in lookup]
    if missing:
        raise BarValidationError(
            "DataFrame is missing OHLC columns",
            [ValidationIssue("column not found", field=name) for name in missing],
        )
    if len(df) == 0:
        raise BarValidationError("no valid bars parsed")

    if isinstance(df.index, pd.DatetimeIndex):
        stamps = df.index
    else:
        time_col = next(
            (lookup[name] for name in ('time', 'timestamp', 'datetime', 'date') if name in lookup),
            None,
        )
        if time_col is None:
            raise BarValidationError(
                "DataFrame has no timestamp",
                [ValidationIssue("expected a DatetimeIndex or a time column", field='time')],
            )
        column = df[time_col]
        if pd.api.types.is_numeric_dtype(column):
            stamps = pd.to_datetime(column, unit='ms', utc=True)
        else:
            stamps = pd.to_datetime(column, utc=True, errors='coerce')
        stamps = pd.DatetimeIndex(stamps)

    issues: List[ValidationIssue] = []
    for pos in np.flatnonzero(pd.isna(stamps)):
        issues.append(ValidationIssue("unparseable timestamp", int(pos), 'time'))
    if stamps.tz is None:
        stamps = stamps.tz_localize('UTC')
    else:
        stamps = stamps.tz_convert('UTC')
    delta = stamps - pd.Timestamp(0, tz='UTC')
    time = np.asarray(delta // pd.Timedelta(milliseconds=1), dtype=float)
    time = np.nan_to_num(time, nan=0.0).astype(np.int64)

    def numeric(name: str) -> np.ndarray:
        values = pd.to_numeric(df[lookup[name]], errors='coerce').to_numpy(dtype=float)
        for pos in np.flatnonzero(np.isnan(values)):
            issues.append(ValidationIssue("not a number", int(pos), name))
        return values

    open_ = numeric('open')
    high = numeric('high')
    low = numeric('low')
    close = numeric('close')
    volume = numeric('volume') if 'volume' in lookup else np.zeros(len(df))

    # NaN cells are already reported; keep them out of the range checks
    bad = np.isnan(open_) | np.isnan(high) | np.isnan(low) | np.isnan(close) | np.isnan(volume)
    if bad.any() or issues:
        keep = ~bad
        rows = [int(p) for p in np.flatnonzero(keep)]
        range_issues = _check_ranges(
            time[keep], open_[keep], high[keep], low[keep], close[keep], volume[keep], rows
        )
        all_issues = sorted(issues + range_issues, key=lambda issue: issue.row or 0)
        raise BarValidationError(f"Rejected {len(all_issues)} invalid bar value(s)", all_issues)

    return _finish(
        time, open_, high, low, close, volume,
        list(range(len(df))), [], f"DataFrame, {len(df)} bars",
    )
