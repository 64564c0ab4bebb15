import pandas as pd

REQUIRED_PRESSURE_COLUMNS = {"reactor_id", "habitat", "treatment", "time_days", "pressure_hPa"}
NUMERIC_PRESSURE_COLUMNS = ("time_days", "pressure_hPa")


def load_pressure_data(csv_path: str) -> pd.DataFrame:
    """Load raw reactor pressure CSV and validate required columns.

    Args:
        csv_path: Path to the CSV file (long format, one row per reading).

    Returns:
        DataFrame sorted by reactor and time, with numeric time/pressure columns
        and string labels.
    """
    df = pd.read_csv(csv_path)
    return validate_pressure_frame(df)


def validate_pressure_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Check columns and types of a raw pressure table.

    Args:
        df: Raw table.

    Returns:
        Cleaned copy; rows whose time or pressure cannot be parsed are dropped.
    """
    missing = REQUIRED_PRESSURE_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns in pressure CSV: {sorted(missing)}")
    df = df.copy()
    for col in NUMERIC_PRESSURE_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    for col in ("reactor_id", "habitat", "treatment"):
        df[col] = df[col].astype(str).str.strip()
    df = df.dropna(subset=list(NUMERIC_PRESSURE_COLUMNS))
    if df.empty:
        raise ValueError("Pressure CSV contains no usable readings")
    return df.sort_values(["reactor_id", "time_days"]).reset_index(drop=True)
