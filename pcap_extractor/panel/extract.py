from __future__ import annotations

from pathlib import Path

import pandas as pd

SOURCE_FILE = "source_file"
SOURCE_PACKET_NUMBER = "source_packet_number"
REQUIRED_FIELDS = (SOURCE_FILE, SOURCE_PACKET_NUMBER)


class ExtractDataError(ValueError):
    """Raised when panel data cannot be turned into an extraction map."""


def transform_extract_data(frame: pd.DataFrame | None) -> dict[str, list[int]]:
    """Group packet numbers by source file.

    Order of first appearance is kept and duplicate packets are dropped.
    """

    columns = set(frame.columns) if frame is not None else set()
    missing = [name for name in REQUIRED_FIELDS if name not in columns]
    if missing:
        raise ExtractDataError(f"Missing required fields: {', '.join(missing)}")

    extract: dict[str, list[int]] = {}
    rows = frame[list(REQUIRED_FIELDS)].dropna()
    for source_file, packet_number in rows.itertuples(index=False, name=None):
        packets = extract.setdefault(str(source_file), [])
        number = int(packet_number)
        if number not in packets:
            packets.append(number)
    return extract


def load_packet_table(path: str | Path) -> pd.DataFrame:
    """Read a packet listing exported from a Grafana table panel."""

    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path)
    if suffix in {".xlsx", ".xlsm"}:
        return pd.read_excel(path, engine="openpyxl")
    if suffix == ".json":
        return pd.read_json(path, orient="records")
    raise ExtractDataError(f"unsupported packet table format: {path.suffix or path.name}")
