"""
Registration loading helpers (read-only).

Important: Keep imports light at module import time (CLI startup).
We import pandas/requests only inside functions.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from errors import DataSourceError
from models import Registration

REGISTRATION_COLUMNS = ["id", "camper_code", "surname", "middle_name", "last_name", "email"]


def _find_column(df: Any, exact: Optional[str], *subs) -> Optional[str]:
    """Find column by exact name or by substrings (all must match, case-insensitive)."""
    df_cols = [str(c).strip() for c in df.columns]
    if exact and exact in df_cols:
        return exact
    low = exact.lower() if exact else ""
    for c in df.columns:
        cs = str(c).strip()
        if exact and cs.lower() == low:
            return c
        if subs and all(s.lower() in cs.lower() for s in subs):
            return c
    return None


def load_registrations_dataframe(path: str, sheet: str = "Sheet1") -> Any:
    """
    Load registrations from Excel or CSV into a DataFrame with columns:
    id, camper_code, surname, middle_name, last_name, email.
    Rows without an id are skipped; duplicate ids keep the first row.
    """
    import pandas as pd

    p = Path(path)
    suf = p.suffix.lower()
    if suf in (".xlsx", ".xls"):
        try:
            df = pd.read_excel(path, sheet_name=sheet, dtype=str)
        except ImportError as e:
            if "openpyxl" in str(e).lower():
                raise ImportError(
                    "Reading Excel requires openpyxl. Install it with:\n  pip install openpyxl"
                ) from e
            raise
    elif suf == ".csv":
        df = pd.read_csv(path, dtype=str)
    else:
        raise DataSourceError(f"Unsupported registration file type: {p.suffix or p.name}")

    df.columns = [str(c).strip() for c in df.columns]
    id_col = (
        _find_column(df, "id")
        or _find_column(df, "Registration ID")
        or _find_column(df, None, "registration", "id")
    )
    if not id_col:
        raise DataSourceError(
            "Could not find a registration id column. "
            "Expected something like 'id' or 'Registration ID'. "
            f"Columns: {list(df.columns)}"
        )
    code_col = _find_column(df, "camper_code") or _find_column(df, None, "camper", "code") or _find_column(df, None, "code")
    surname_col = _find_column(df, "surname") or _find_column(df, "First Name") or _find_column(df, None, "first", "name")
    middle_col = _find_column(df, "middle_name") or _find_column(df, None, "middle")
    last_col = _find_column(df, "last_name") or _find_column(df, None, "last", "name")
    email_col = _find_column(df, "email") or _find_column(df, None, "mail")

    renames = {
        id_col: "id",
        code_col: "camper_code",
        surname_col: "surname",
        middle_col: "middle_name",
        last_col: "last_name",
        email_col: "email",
    }
    out = df.rename(columns={k: v for k, v in renames.items() if k}).copy()
    for col in REGISTRATION_COLUMNS:
        if col not in out.columns:
            out[col] = ""
        out[col] = out[col].fillna("").astype(str).str.strip()

    total_rows = len(out)
    out = out[(out["id"] != "") & (out["id"].str.lower() != "nan")]
    kept = len(out)
    out = out.drop_duplicates(subset=["id"]).reset_index(drop=True)
    out = out[REGISTRATION_COLUMNS]
    out.attrs["load_stats"] = {
        "source_rows": total_rows,
        "kept_rows_before_dedup": kept,
        "loaded_rows": len(out),
        "skipped_missing_id": total_rows - kept,
        "dropped_duplicate_id": kept - len(out),
    }
    return out


def registrations_from_dataframe(df: Any) -> List[Registration]:
    return [Registration.from_dict(row) for row in df.to_dict(orient="records")]


def load_registrations(path: str, sheet: str = "Sheet1") -> List[Registration]:
    """Load registrations from a CSV or Excel file."""
    return registrations_from_dataframe(load_registrations_dataframe(path, sheet=sheet))


def _raise_with_response(prefix: str, endpoint: str, resp) -> None:
    ct = (resp.headers.get("Content-Type") or "").split(";")[0].strip() or "unknown"
    snippet = (resp.text or "")[:500]
    raise DataSourceError(
        f"{prefix} (status: {resp.status_code}, content-type: {ct}). "
        f"Endpoint: {endpoint}. "
        f"Body (first 500 chars): {snippet}"
    )


def _api_get(base_url: str, path: str, token: Optional[str], params: Optional[Dict[str, str]], timeout_s: int) -> Any:
    """GET a backend resource and unwrap its {"data": ...} envelope."""
    import requests

    endpoint = f"{base_url.rstrip('/')}{path}"
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    try:
        resp = requests.get(endpoint, params=params or None, headers=headers, timeout=(10, max(10, int(timeout_s))))
    except requests.RequestException as e:
        raise DataSourceError(f"Registration API request failed: {e}") from e

    if resp.status_code == 401:
        _raise_with_response("Registration API unauthorized (401). Check API_TOKEN", endpoint, resp)
    if resp.status_code == 404:
        _raise_with_response("Registration API not found (404). Check the camp or registration id", endpoint, resp)
    if resp.status_code != 200:
        _raise_with_response("Registration API error", endpoint, resp)
    try:
        body = resp.json()
    except ValueError as e:
        raise DataSourceError(f"Registration API response was not valid JSON. Endpoint: {endpoint}") from e
    if not isinstance(body, dict) or "data" not in body:
        raise DataSourceError(f"Unexpected registration API response: missing 'data'. Endpoint: {endpoint}")
    return body["data"]


def fetch_camp_registrations(
    base_url: str,
    camp_id: str,
    *,
    token: Optional[str] = None,
    church_id: Optional[str] = None,
    category_id: Optional[str] = None,
    timeout_s: int = 30,
) -> List[Registration]:
    """
    Load all registrations of a camp from the backend:
      GET {base_url}/camps/{camp_id}/registrations[?church_id=...&category_id=...]
    """
    camp_id = (camp_id or "").strip()
    if not camp_id:
        raise ValueError("camp_id is required.")
    params = {}
    if church_id:
        params["church_id"] = church_id
    if category_id:
        params["category_id"] = category_id
    rows = _api_get(base_url, f"/camps/{camp_id}/registrations", token, params, timeout_s)
    if not isinstance(rows, list):
        raise DataSourceError(f"Unexpected registration list type: {type(rows).__name__}")
    return [Registration.from_dict(r) for r in rows if isinstance(r, dict) and r.get("id")]


def fetch_registration(base_url: str, registration_id: str, *, token: Optional[str] = None, timeout_s: int = 30) -> Registration:
    """GET {base_url}/camps/registrations/{registration_id}"""
    data = _api_get(base_url, f"/camps/registrations/{registration_id}", token, None, timeout_s)
    if not isinstance(data, dict):
        raise DataSourceError(f"Unexpected registration type: {type(data).__name__}")
    return Registration.from_dict(data)


def select_registrations(registrations: Sequence[Registration], ids: Optional[Sequence[str]]) -> List[Registration]:
    """Keep the registrations whose id or camper code is listed, in the order given."""
    if not ids:
        return list(registrations)
    by_key: Dict[str, Registration] = {}
    for r in registrations:
        by_key.setdefault(r.id, r)
        if r.camper_code:
            by_key.setdefault(r.camper_code, r)
    missing = [i for i in ids if i not in by_key]
    if missing:
        raise DataSourceError(f"Unknown registration id(s): {', '.join(missing)}")
    return [by_key[i] for i in ids]
