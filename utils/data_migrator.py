import argparse
import csv
import json
import logging
import os
from typing import Dict, List, Iterable, Optional

from dotenv import load_dotenv
from supabase import create_client, Client

from domain.models import DISCOUNT_KINDS

logger = logging.getLogger(__name__)

BATCH_SIZE = 500

BOOL_COLUMNS = ("exclusive", "auto_apply", "active", "once_per_customer")
NUMBER_COLUMNS = ("value", "max_discount", "min_total")


def chunked(rows: List[Dict], size: int) -> Iterable[List[Dict]]:
    """Consecutive slices of at most `size` rows."""
    start = 0
    while start < len(rows):
        yield rows[start:start + size]
        start += size


def _clean(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    val = val.strip()
    return val or None


def read_csv(file_name: str) -> tuple[List[Dict], List[str]]:
    """
    Rows of a discount CSV plus its header names. Cells are trimmed and
    blanks come back as None, so an empty `max_discount` means "no cap".
    """
    with open(file_name, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if not header:
            raise ValueError("CSV has no header row; expected at least code,type,value")

        columns = [c.strip() for c in header]
        keep = [i for i, c in enumerate(columns) if c]
        rows = [
            {columns[i]: _clean(line[i]) if i < len(line) else None for i in keep}
            for line in reader
            if any(cell.strip() for cell in line)
        ]

    return rows, [columns[i] for i in keep]


def dedupe_rows(rows: List[Dict], key_cols: List[str]) -> List[Dict]:
    """
    First row wins for each key; rows with a blank key are skipped
    (a discount without a code cannot be upserted).
    """
    by_key: Dict[tuple, Dict] = {}
    for r in rows:
        key = tuple(str(r.get(c) or "").strip() for c in key_cols)
        if "" in key:
            continue
        by_key.setdefault(key, r)
    return list(by_key.values())


def prepare_discount_row(row: Dict) -> Dict:
    """
    Turn a CSV row into a `discounts` payload: rules JSON parsed,
    flags as booleans, amounts as floats.
    Raises ValueError on an unknown type or invalid rules JSON.
    """
    out = dict(row)

    kind = (out.get("type") or "").strip()
    if kind not in DISCOUNT_KINDS:
        raise ValueError(f"Unknown discount type {kind!r} for code {out.get('code')!r}")
    out["type"] = kind

    rules = out.get("rules")
    if rules:
        try:
            out["rules"] = json.loads(rules)
        except ValueError as e:
            raise ValueError(f"Invalid rules JSON for code {out.get('code')!r}: {e}") from e
    elif "rules" in out:
        out["rules"] = {}

    for col in BOOL_COLUMNS:
        if col in out and out[col] is not None:
            out[col] = str(out[col]).lower() in ("1", "true", "t", "yes", "y")

    for col in NUMBER_COLUMNS:
        if col in out and out[col] is not None:
            out[col] = float(out[col])

    return out


def load_discounts(
    supabase: Client,
    schema_name: str,
    file_name: str,
    column_list: Optional[List[str]] = None,
    batch_size: int = BATCH_SIZE,
) -> int:
    rows, header_cols = read_csv(file_name)

    if column_list is None:
        column_list = header_cols

    missing = [c for c in column_list if c not in header_cols]
    if missing:
        raise ValueError(f"CSV missing columns: {missing}. Found: {header_cols}")

    filtered = [{c: r.get(c) for c in column_list} for r in rows]
    deduped = dedupe_rows(filtered, ["code"])

    if not deduped:
        logger.warning("No valid rows to insert (after dedupe / missing code filtering).")
        return 0

    prepared = [prepare_discount_row(r) for r in deduped]

    total = 0
    for batch in chunked(prepared, batch_size):
        supabase.schema(schema_name).table("discounts").upsert(
            batch,
            on_conflict="code",
        ).execute()
        total += len(batch)
        logger.info("Upserted %d rows (running total: %d)", len(batch), total)

    logger.info("Done: %s.discounts <- %s (%d unique codes)", schema_name, file_name, total)
    return total


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

    parser = argparse.ArgumentParser(description="Upsert discount codes from a CSV file")
    parser.add_argument("file_name", help="CSV with at least code,type,value columns")
    parser.add_argument("--schema", default=os.getenv("SCHEMA", "public"))
    args = parser.parse_args()

    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_KEY = os.getenv("SUPABASE_KEY")  # use SERVICE_ROLE for scripts
    if not SUPABASE_URL or not SUPABASE_KEY:
        raise RuntimeError("Set SUPABASE_URL and SUPABASE_KEY in .env or environment variables")

    load_discounts(
        supabase=create_client(SUPABASE_URL, SUPABASE_KEY),
        schema_name=args.schema,
        file_name=args.file_name,
    )
