from __future__ import annotations

import json
from pathlib import Path

import pandas as pd

from crmsync.core.db import CrmRepository

LIST_COLUMNS = ("to_addresses", "ai_action_items")


def _flatten_list_column(value: str | None) -> str:
    if not value:
        return ""
    items = json.loads(value)
    return " | ".join(str(item) for item in items) if isinstance(items, list) else str(items)


def export_summaries(
    repository: CrmRepository,
    user_id: str,
    formats: list[str],
    out_dir: Path,
) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    rows = repository.fetch_summary_export_rows(user_id)
    df = pd.DataFrame(rows)
    for column in LIST_COLUMNS:
        if column in df.columns:
            df[column] = df[column].map(_flatten_list_column)

    created_files: list[Path] = []
    if "csv" in formats:
        csv_path = (out_dir / "email_summaries.csv").resolve()
        df.to_csv(csv_path, index=False, encoding="utf-8-sig")
        created_files.append(csv_path)

    if "xlsx" in formats:
        xlsx_path = (out_dir / "email_summaries.xlsx").resolve()
        with pd.ExcelWriter(xlsx_path, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="summaries")
        created_files.append(xlsx_path)

    return created_files
