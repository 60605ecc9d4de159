import logging
import pandas as pd
from fastapi import UploadFile, HTTPException
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional
from openpyxl import load_workbook
from csv_assistant.core.config import get_settings
from csv_assistant.core.sanitization import sanitize_cell_value, sanitize_filename, validate_column_name
from csv_assistant.core.performance import track_performance
from csv_assistant.services.profiler import parse_number

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'.csv', '.xlsx', '.xls'}

MIME_TYPE_MAP = {
    'text/csv': '.csv',
    'application/vnd.ms-excel': '.xls',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet': '.xlsx',
}

DANGEROUS_MIME_TYPES = {
    'application/x-executable',
    'application/x-sharedlib',
    'application/x-msdownload',
    'text/html',
    'application/javascript',
}


def read_excel_unmerged(contents: bytes) -> Optional[pd.DataFrame]:
    """
    Read the largest sheet of an .xlsx workbook with merged cells filled
    from their top-left cell. Cells are read raw; the header row is picked
    later by find_header_row.

    Returns None when openpyxl cannot read the workbook.
    """
    try:
        wb = load_workbook(BytesIO(contents), data_only=True)
    except Exception as e:
        logger.warning(f"openpyxl parsing failed, falling back to pandas: {e}")
        return None

    ws = max((wb[name] for name in wb.sheetnames), key=lambda sheet: sheet.max_row, default=wb.active)
    merged_ranges = list(ws.merged_cells.ranges)
    for merged_range in merged_ranges:
        value = ws.cell(merged_range.min_row, merged_range.min_col).value
        ws.unmerge_cells(str(merged_range))
        for row in range(merged_range.min_row, merged_range.max_row + 1):
            for col in range(merged_range.min_col, merged_range.max_col + 1):
                ws.cell(row, col, value)

    if merged_ranges:
        logger.info(f"Unmerged {len(merged_ranges)} cell ranges in sheet '{ws.title}'")
    return pd.DataFrame(list(ws.values))


def find_header_row(df: pd.DataFrame, max_scan_rows: int = 10) -> int:
    """
    Pick the row that most looks like a header within the first rows.

    Headers fill the row with unique non-numeric text. CSV cells arrive as
    strings, so numeric-looking text counts as a number. The first row gets a
    small bonus since it is the usual case.
    """
    if len(df) < 2:
        return 0

    width = len(df.columns)
    best_row, best_score = 0, 0.0
    for row_idx in range(min(max_scan_rows, len(df))):
        row = df.iloc[row_idx]
        present = [v for v in row if pd.notna(v) and str(v).strip()]
        if not present:
            continue

        fill_ratio = len(present) / width
        unique_ratio = len({str(v).strip().lower() for v in present}) / len(present)
        numeric_ratio = sum(1 for v in present if parse_number(v) is not None) / len(present)
        score = fill_ratio * 0.4 + unique_ratio * 0.3 + (1 - numeric_ratio) * 0.3
        if row_idx == 0:
            score += 0.05

        if score > best_score:
            best_score, best_row = score, row_idx
    return best_row


def promote_header(df: pd.DataFrame, header_row: int) -> pd.DataFrame:
    if header_row > 0:
        logger.info(f"Auto-detected header at row {header_row}, skipping {header_row} metadata rows")
    header = [
        str(v).strip() if pd.notna(v) and str(v).strip() else f"Column {i + 1}"
        for i, v in enumerate(df.iloc[header_row])
    ]
    body = df.iloc[header_row + 1:].reset_index(drop=True)
    body.columns = header
    return body


def validate_file_extension(filename: str) -> str:
    """Return the lower-cased extension, or raise a 400."""
    if not filename:
        raise HTTPException(status_code=400, detail="Filename is required")

    file_ext = Path(filename).suffix.lower()
    if not file_ext:
        raise HTTPException(
            status_code=400,
            detail="File must have an extension. Supported formats: CSV, XLSX, XLS"
        )
    if file_ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file format: {file_ext}. Allowed formats: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    return file_ext


def validate_mime_type(content_type: Optional[str], file_ext: str) -> None:
    if not content_type:
        return

    expected_ext = MIME_TYPE_MAP.get(content_type.lower())
    if expected_ext and expected_ext != file_ext:
        # Browsers send inconsistent MIME types for spreadsheets
        logger.warning(f"MIME type {content_type} doesn't match extension {file_ext}")

    if content_type.lower() in DANGEROUS_MIME_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"File type '{content_type}' is not allowed. Only CSV and Excel files are supported."
        )


def read_csv_raw(contents: bytes) -> pd.DataFrame:
    # Every cell stays a string; typing is the profiler's job
    try:
        return pd.read_csv(BytesIO(contents), header=None, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except UnicodeDecodeError:
        return pd.read_csv(BytesIO(contents), header=None, dtype=str, keep_default_na=False,
                           skip_blank_lines=True, encoding='latin1')


def read_excel_raw(contents: bytes, file_ext: str) -> pd.DataFrame:
    df = read_excel_unmerged(contents) if file_ext == '.xlsx' else None
    if df is not None:
        return df

    excel_file = pd.ExcelFile(BytesIO(contents))
    sheets = {name: pd.read_excel(excel_file, sheet_name=name, header=None) for name in excel_file.sheet_names}
    largest = max(sheets, key=lambda name: len(sheets[name]))
    if len(sheets) > 1:
        logger.info(f"Multi-sheet Excel file detected. Selected '{largest}' from {len(sheets)} sheets")
    return sheets[largest]


def read_raw_frame(contents: bytes, file_ext: str) -> pd.DataFrame:
    if file_ext == '.csv':
        try:
            return read_csv_raw(contents)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            logger.error(f"Error parsing CSV file: {e}")
            raise HTTPException(
                status_code=400,
                detail="Unable to parse CSV file. Please ensure the file is properly formatted."
            )
    try:
        return read_excel_raw(contents, file_ext)
    except (ValueError, OSError, KeyError) as e:
        logger.error(f"Error parsing Excel file: {e}")
        raise HTTPException(
            status_code=400,
            detail="Unable to parse Excel file. Please ensure the file is not corrupted."
        )


def clean_dataframe(df: pd.DataFrame) -> pd.DataFrame:
    """Drop empty rows and columns and flatten whitespace in headers."""
    df = df.replace('', pd.NA)
    df = df.dropna(how='all', axis=0)
    df = df.dropna(how='all', axis=1)
    df.columns = [' '.join(str(col).replace('\n', ' ').replace('\r', ' ').split()) for col in df.columns]
    return df


def validate_file_content(df: pd.DataFrame) -> None:
    """
    Reject frames that are too large or carry unsafe headers.

    Raises:
        HTTPException: If content validation fails
    """
    settings = get_settings()
    if len(df) > settings.max_file_rows:
        raise HTTPException(
            status_code=400,
            detail=f"File contains too many rows ({len(df):,}). Maximum allowed: {settings.max_file_rows:,} rows."
        )
    if len(df.columns) > settings.max_file_columns:
        raise HTTPException(
            status_code=400,
            detail=f"File contains too many columns ({len(df.columns)}). Maximum allowed: {settings.max_file_columns} columns."
        )
    if df.columns.duplicated().any():
        duplicates = sorted(set(df.columns[df.columns.duplicated()]))
        raise HTTPException(status_code=400, detail=f"Duplicate column names: {', '.join(duplicates)}")

    for col in df.columns:
        if not validate_column_name(str(col)):
            raise HTTPException(
                status_code=400,
                detail=f"Invalid column name: '{col}'. Column names must be safe and not contain path traversal or special characters."
            )
        max_length = df[col].astype(str).str.len().max()
        if pd.notna(max_length) and max_length > settings.max_cell_size_bytes:
            raise HTTPException(
                status_code=400,
                detail=f"File contains extremely large text values in column '{col}'. Maximum allowed: {settings.max_cell_size_bytes} bytes per cell."
            )


def _cell_text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(sanitize_cell_value(str(value).strip()))


def dataframe_to_rows(df: pd.DataFrame) -> List[Dict[str, str]]:
    """Rows as {header: text}; empty cells become ''."""
    columns = [str(c) for c in df.columns]
    return [
        {column: _cell_text(value) for column, value in zip(columns, values)}
        for values in df.itertuples(index=False, name=None)
    ]


@track_performance("parse_contents")
def parse_contents(contents: bytes, filename: str, content_type: Optional[str] = None) -> List[Dict[str, str]]:
    """
    Parse raw upload bytes into a list of row dicts.

    Raises:
        HTTPException: 400 for unsupported, empty, malformed or oversized files
    """
    file_ext = validate_file_extension(filename)
    validate_mime_type(content_type, file_ext)
    if not contents:
        raise HTTPException(status_code=400, detail="File is empty")

    raw = read_raw_frame(contents, file_ext)
    if raw.empty:
        raise HTTPException(status_code=400, detail="File appears to be empty or contains no data")

    df = clean_dataframe(promote_header(raw, find_header_row(raw)))
    if df.empty:
        raise HTTPException(status_code=400, detail="File appears to be empty or contains no data")
    validate_file_content(df)

    rows = dataframe_to_rows(df)
    logger.info(f"Successfully parsed file: {sanitize_filename(filename)}, shape: {df.shape}")
    return rows


async def parse_file(file: UploadFile) -> List[Dict[str, str]]:
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename is required")
    contents = await file.read()
    return parse_contents(contents, file.filename, file.content_type)
