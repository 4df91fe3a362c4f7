from __future__ import annotations

import io
import re
import unicodedata
from datetime import date, datetime

import pandas as pd


def read_excel_bytes(content: bytes) -> pd.DataFrame:
    """Read .xlsx bytes into a DataFrame.

    v1: reads first sheet.
    """
    bio = io.BytesIO(content)
    df = pd.read_excel(bio)
    # normalize column names
    df.columns = [str(c).strip() for c in df.columns]
    return df


def write_excel_bytes(sheets: list[tuple[str, pd.DataFrame, bool]]) -> bytes:
    """Serialize (sheet_name, frame, with_header) tuples into a single .xlsx."""
    bio = io.BytesIO()
    with pd.ExcelWriter(bio, engine="openpyxl") as writer:
        for name, frame, with_header in sheets:
            # Excel caps sheet names at 31 chars.
            frame.to_excel(writer, sheet_name=name[:31], index=False, header=with_header)
    return bio.getvalue()


def normalize_col_name(name: str) -> str:
    """Normalize Excel column names to an ASCII-ish snake_case token.

    Handles exports with accents, non-breaking spaces, tabs, and punctuation.
    """

    s = str(name or "").strip().lower()
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = s.replace("\u00a0", " ")
    s = re.sub(r"[\s\t]+", " ", s)
    # keep alnum + spaces, turn the rest into spaces
    s = re.sub(r"[^a-z0-9 ]+", " ", s)
    s = re.sub(r"\s+", "_", s).strip("_")
    return s


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [normalize_col_name(c) for c in df.columns]
    return df


_DIGITS_RE = re.compile(r"^\d+$")


def parse_int_strict(value, *, field: str) -> int:
    """Parse an integer id from a spreadsheet cell.

    Accepts ints, floats like 123.0, and digit-only strings.
    Raises ValueError otherwise.
    """
    if value is None:
        raise ValueError(f"{field} vacío")

    if isinstance(value, int):
        return int(value)

    if isinstance(value, float):
        if pd.isna(value):
            raise ValueError(f"{field} vacío")
        if float(value).is_integer():
            return int(value)
        raise ValueError(f"{field} inválido (no entero): {value!r}")

    s = str(value).strip()
    if not s:
        raise ValueError(f"{field} vacío")
    if _DIGITS_RE.match(s):
        return int(s)

    raise ValueError(f"{field} inválido: {value!r}")


def coerce_datetime_text(value) -> str:
    """Coerce common Excel/Pandas date representations to ISO text.

    Pure dates become YYYY-MM-DD; values with a time part keep it as
    YYYY-MM-DD HH:MM:SS so the store can still order by it.
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        raise ValueError("fecha_solicitud vacía")

    # pandas Timestamp
    if hasattr(value, "to_pydatetime"):
        value = value.to_pydatetime()

    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.strftime("%Y-%m-%d %H:%M:%S")

    if isinstance(value, date):
        return value.isoformat()

    s = str(value).strip()
    try:
        return coerce_datetime_text(datetime.fromisoformat(s))
    except ValueError:
        pass

    # Accept DD-MM-YYYY / DD/MM/YYYY
    for fmt in ("%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d", "%d/%m/%Y %H:%M"):
        try:
            return coerce_datetime_text(datetime.strptime(s, fmt))
        except ValueError:
            continue

    raise ValueError(f"fecha_solicitud inválida: {value!r}")


def coerce_text(value) -> str | None:
    """Strip a cell to text; empty/NaN become None."""
    if value is None:
        return None
    try:
        if isinstance(value, float) and pd.isna(value):
            return None
    except Exception:
        pass
    s = str(value).replace("\u00a0", " ").strip()
    if not s or s.lower() == "nan":
        return None
    return s
