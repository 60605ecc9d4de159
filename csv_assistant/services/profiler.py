import logging
import math
import re
import pandas as pd
from typing import Any, List, Optional, Sequence, Tuple
from csv_assistant.core.schemas import (
    ColumnProfile, Row, NUMERIC_COLUMN_TYPES, GROUPING_COLUMN_TYPES
)
from csv_assistant.core.performance import track_performance

logger = logging.getLogger(__name__)

# Currency symbols, thousands separators, percent signs and whitespace
NUMBER_NOISE = re.compile(r'[$€£¥₹,%\s]')


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a cell into a float, tolerating "$1,200", "45%" and " 3.5 ".

    Returns None for empty, boolean, non-numeric or non-finite values.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        cleaned = NUMBER_NOISE.sub('', str(value))
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None

    if not math.isfinite(number):
        return None
    return number


def parse_numeric_series(series: pd.Series) -> pd.Series:
    """Vectorised parse_number for a column; cells that do not parse become NaN."""
    cleaned = series.astype(str).str.replace(NUMBER_NOISE.pattern, '', regex=True)
    numbers = pd.to_numeric(cleaned, errors='coerce').astype(float)
    return numbers.replace([math.inf, -math.inf], math.nan)


def _empty_mask(series: pd.Series) -> pd.Series:
    return series.isna() | series.astype(str).str.strip().eq('')


def column_order(rows: Sequence[Row]) -> List[str]:
    """Header order of the first row, then keys first seen in later rows."""
    seen = {}
    for row in rows:
        for key in row.keys():
            seen.setdefault(key, None)
    return list(seen)


def _profile_column(name: str, series: pd.Series, row_count: int) -> ColumnProfile:
    empty_mask = _empty_mask(series)
    non_empty = series[~empty_mask]

    if non_empty.empty:
        return ColumnProfile(name=name, type='categorical', unique_values=0, missing_percentage=100.0)

    parsed = parse_numeric_series(non_empty)
    if parsed.notna().all():
        return ColumnProfile(
            name=name,
            type='numerical',
            value_range=(float(parsed.min()), float(parsed.max())),
            missing_percentage=(1 - len(parsed) / row_count) * 100,
        )

    return ColumnProfile(
        name=name,
        type='categorical',
        unique_values=int(series.where(~empty_mask, '').astype(str).nunique()),
        missing_percentage=float(empty_mask.sum()) / row_count * 100,
    )


@track_performance("profile_columns")
def profile_columns(rows: Sequence[Row]) -> List[ColumnProfile]:
    """
    Classify every column as numerical or categorical.

    A column is numerical when every non-empty cell parses with parse_number.
    missing_percentage is expressed on a 0-100 scale.
    """
    if not rows:
        return []

    row_count = len(rows)
    profiles = []
    for name in column_order(rows):
        series = pd.Series([row.get(name) for row in rows], dtype=object)
        profiles.append(_profile_column(name, series, row_count))

    logger.debug(
        f"Profiled {len(profiles)} columns over {row_count} rows",
        extra={'numerical': sum(1 for p in profiles if p.type == 'numerical')}
    )
    return profiles


def split_columns(profiles: Sequence[ColumnProfile]) -> Tuple[List[str], List[str]]:
    """Return (grouping column names, numeric column names)."""
    grouping = [p.name for p in profiles if p.type in GROUPING_COLUMN_TYPES]
    numeric = [p.name for p in profiles if p.type in NUMERIC_COLUMN_TYPES]
    return grouping, numeric
