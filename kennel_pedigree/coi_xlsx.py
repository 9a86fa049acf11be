from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Optional, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from .models import COIResult

DEFAULT_SHEET = "COI"

HEADERS: list[str] = [
    "DogId",
    "Name",
    "RegistrationNumber",
    "COI",
    "COI_Percent",
    "RiskLevel",
    "Status",
    "Truncated",
    "Generations",
    "CommonAncestors",
]


# ----------------------------
# Normalization
# ----------------------------

_PARENS_SUFFIX_RE = re.compile(r"\s*\([^)]*\)\s*$")


def _normalize_name_for_key(name: str) -> str:
    """
    Normalize a dog name for stable row matching (UPSERT key):
    first line only, no trailing '(...)' suffix, collapsed whitespace, casefolded.
    """
    lines = (name or "").splitlines()
    s = lines[0].strip() if lines else ""
    s = _PARENS_SUFFIX_RE.sub("", s).strip()
    s = " ".join(s.split())
    return s.casefold()


def _normalize_regno(regno: str) -> str:
    return "".join((regno or "").split()).upper()


def _get_or_create_sheet(wb: Workbook, sheet_name: str) -> Worksheet:
    if sheet_name in wb.sheetnames:
        return wb[sheet_name]
    return wb.create_sheet(title=sheet_name)


def _read_headers(ws: Worksheet) -> list[str]:
    if ws.max_row < 1:
        return []
    out = ["" if cell.value is None else str(cell.value) for cell in ws[1]]
    while out and out[-1] == "":
        out.pop()
    return out


def _ensure_headers(ws: Worksheet) -> list[str]:
    """
    Write the header row on a fresh sheet; on an existing sheet append any
    missing columns (existing rows are left blank in them).
    """
    existing = _read_headers(ws)
    updated = existing + [h for h in HEADERS if h not in set(existing)]
    if updated != existing:
        for col_idx, h in enumerate(updated, start=1):
            ws.cell(row=1, column=col_idx, value=h)
    return updated


def _cell_str(v: Any) -> str:
    return "" if v is None else str(v).strip()


def _find_matching_rows(
    ws: Worksheet,
    header_to_col: dict[str, int],
    *,
    dog_id: Optional[str],
    dog_name: str,
    registration_number: str,
) -> list[int]:
    """
    Worksheet row indices (>=2) matching the UPSERT key:
      - DogId when present
      - else NormalizedName + RegistrationNumber
    """
    col_id = header_to_col["DogId"]
    col_name = header_to_col["Name"]
    col_reg = header_to_col["RegistrationNumber"]

    target_name = _normalize_name_for_key(dog_name)
    target_reg = _normalize_regno(registration_number)

    matches: list[int] = []
    for r in range(2, ws.max_row + 1):
        if dog_id:
            if _cell_str(ws.cell(row=r, column=col_id).value) == dog_id:
                matches.append(r)
            continue

        if _cell_str(ws.cell(row=r, column=col_id).value):
            continue
        row_name = _normalize_name_for_key(_cell_str(ws.cell(row=r, column=col_name).value))
        row_reg = _normalize_regno(_cell_str(ws.cell(row=r, column=col_reg).value))
        if row_name == target_name and row_reg == target_reg:
            matches.append(r)

    return matches


def append_coi_row(
    *,
    xlsx_path: Path,
    dog_id: Optional[str],
    dog_name: str,
    result: COIResult,
    generations: int,
    registration_number: str = "",
    common_ancestor_names: Sequence[str] = (),
    sheet_name: str = DEFAULT_SHEET,
) -> None:
    """
    UPSERT exactly one COI row for a dog.

      - Missing file: created with headers.
      - Matching row (DogId, else normalized Name + RegistrationNumber):
        overwritten; duplicate matches beyond the first are deleted.
      - No match: appended.

    An unavailable COI is written as empty COI / COI_Percent cells with
    RiskLevel "N/A", never as 0.
    """
    xlsx_path = Path(xlsx_path)
    existed = xlsx_path.exists()
    wb = load_workbook(xlsx_path) if existed else Workbook()

    ws = _get_or_create_sheet(wb, sheet_name)

    # Drop openpyxl's empty default sheet when creating a named one
    if not existed and "Sheet" in wb.sheetnames and sheet_name != "Sheet":
        default_ws = wb["Sheet"]
        if default_ws.max_row == 1 and default_ws.max_column == 1 and default_ws["A1"].value is None:
            wb.remove(default_ws)

    headers = _ensure_headers(ws)
    header_to_col = {h: i + 1 for i, h in enumerate(headers)}

    dog_id = str(dog_id).strip() if dog_id else None
    row_data: dict[str, Any] = {
        "DogId": dog_id or "",
        "Name": dog_name,
        "RegistrationNumber": registration_number or "",
        "COI": round(result.value, 6) if result.value is not None else "",
        "COI_Percent": round(result.percent, 2) if result.percent is not None else "",
        "RiskLevel": result.risk_level,
        "Status": result.status.value,
        "Truncated": "yes" if result.truncated else "no",
        "Generations": generations,
        "CommonAncestors": "; ".join(common_ancestor_names),
    }

    matching_rows = _find_matching_rows(
        ws,
        header_to_col,
        dog_id=dog_id,
        dog_name=dog_name,
        registration_number=registration_number,
    )

    if matching_rows:
        target_row = matching_rows[0]
        for r in sorted(matching_rows[1:], reverse=True):
            ws.delete_rows(r, 1)
    else:
        target_row = ws.max_row + 1 if ws.max_row >= 1 else 2

    for h, v in row_data.items():
        ws.cell(row=target_row, column=header_to_col[h], value=v)

    xlsx_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(xlsx_path)
