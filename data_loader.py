import base64
import json
import os
import time

import pandas as pd

from config import (
    PORTFOLIO_DIR,
    PORTFOLIO_FILE,
    DEFAULT_BENCHMARK_RATE,
    DEFAULT_STRATEGY,
    STRATEGIES,
    DOCUMENT_CACHE_SECONDS,
)

# ============================================================
# CONFIG
# ============================================================
FILE_PREFIX = "portfolio-"
FILE_SUFFIX = ".json"
FALLBACK_FILE = "portfolio.json"

# Keys written by earlier versions of the document -> current keys
LEGACY_PORTFOLIO_KEYS = {"cdi": "benchmarkAnnualRate"}
LEGACY_FUND_KEYS = {"target": "targetPct", "aportes": "contributions"}

# In-memory cache of the last document read from disk
_DOCUMENT_CACHE = {
    "document": None,
    "file": None,
    "mtime": None,
    "checked_at": 0.0,
}


def _reset_cache():
    _DOCUMENT_CACHE.update({"document": None, "file": None, "mtime": None, "checked_at": 0.0})


# ------------------------------------------------------------
# Document shape
# ------------------------------------------------------------

def empty_document() -> dict:
    return {
        "capital": "",
        "benchmarkAnnualRate": DEFAULT_BENCHMARK_RATE,
        "strategy": DEFAULT_STRATEGY,
        "funds": [],
    }


def _as_text(value) -> str:
    if value is None:
        return ""
    return str(value)


def _normalize_records(records, keys) -> list:
    if not isinstance(records, list):
        return []
    rows = []
    for rec in records:
        if not isinstance(rec, dict):
            continue
        rows.append({k: _as_text(rec.get(k)) for k in keys})
    return rows


def _normalize_fund(raw: dict, position: int) -> dict:
    fund = dict(raw)
    for old, new in LEGACY_FUND_KEYS.items():
        if old in fund and new not in fund:
            fund[new] = fund.pop(old)
        else:
            fund.pop(old, None)

    return {
        **fund,
        "id": _as_text(fund.get("id")) or f"fund-{position}",
        "name": _as_text(fund.get("name")),
        "targetPct": _as_text(fund.get("targetPct")),
        "enabled": bool(fund.get("enabled", True)),
        "expanded": bool(fund.get("expanded", False)),
        "contributions": _normalize_records(fund.get("contributions"), ("value", "return", "date")),
        "balances": _normalize_records(fund.get("balances"), ("value", "date")),
    }


def normalize_document(raw) -> dict:
    """
    Bring a stored document to the current shape.

    Maps legacy keys (cdi, target, aportes), fills defaults, assigns missing
    fund ids and keeps any extra UI-state keys (chart filters, expanded flags).
    Raises ValueError when the document is not a JSON object.
    """
    if not isinstance(raw, dict):
        raise ValueError("Portfolio document must be a JSON object.")

    doc = dict(raw)
    for old, new in LEGACY_PORTFOLIO_KEYS.items():
        if old in doc and new not in doc:
            doc[new] = doc.pop(old)
        else:
            doc.pop(old, None)

    strategy = _as_text(doc.get("strategy")).strip().lower()
    if strategy not in STRATEGIES:
        strategy = DEFAULT_STRATEGY

    funds = doc.get("funds") if isinstance(doc.get("funds"), list) else []

    return {
        **doc,
        "capital": _as_text(doc.get("capital")),
        "benchmarkAnnualRate": _as_text(doc.get("benchmarkAnnualRate") or DEFAULT_BENCHMARK_RATE),
        "strategy": strategy,
        "funds": [_normalize_fund(f, i) for i, f in enumerate(funds) if isinstance(f, dict)],
    }


# ------------------------------------------------------------
# Disk access
# ------------------------------------------------------------

def find_latest_portfolio_file(directory: str = PORTFOLIO_DIR):
    """
    Newest stored document: the last `portfolio-*.json` by name (dated exports
    sort chronologically), else `portfolio.json`, else None.
    """
    if not os.path.isdir(directory):
        return None

    names = sorted(
        name for name in os.listdir(directory)
        if name.startswith(FILE_PREFIX)
        and name.endswith(FILE_SUFFIX)
        and os.path.isfile(os.path.join(directory, name))
    )
    if names:
        return os.path.join(directory, names[-1])

    fallback = os.path.join(directory, FALLBACK_FILE)
    if os.path.isfile(fallback):
        return fallback
    return None


def load_portfolio_document(path: str = None, directory: str = PORTFOLIO_DIR) -> dict:
    """
    Load and normalise the current portfolio document.

    With no explicit `path`, the newest file in `directory` is used. Disk is
    re-checked at most once every DOCUMENT_CACHE_SECONDS and only re-read when
    the file name or its modification time changed. Returns an empty document
    when nothing is stored yet. OSError and JSONDecodeError propagate.
    """
    now = time.monotonic()
    cached = _DOCUMENT_CACHE["document"]
    if path is None and cached is not None and now - _DOCUMENT_CACHE["checked_at"] < DOCUMENT_CACHE_SECONDS:
        return cached
    _DOCUMENT_CACHE["checked_at"] = now

    filename = path or find_latest_portfolio_file(directory)
    if filename is None:
        return empty_document()

    mtime = os.path.getmtime(filename)
    if cached is not None and filename == _DOCUMENT_CACHE["file"] and mtime == _DOCUMENT_CACHE["mtime"]:
        return cached

    print(f"Loading portfolio from disk: {filename}")
    with open(filename, "r", encoding="utf-8") as f:
        document = normalize_document(json.load(f))

    _DOCUMENT_CACHE.update({"document": document, "file": filename, "mtime": mtime})
    return document


def save_portfolio_document(document: dict, path: str = None) -> str:
    """Write the document as indented JSON and make it the cached copy."""
    document = normalize_document(document)
    filename = path or os.path.join(PORTFOLIO_DIR, PORTFOLIO_FILE)

    with open(filename, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False)

    _DOCUMENT_CACHE.update({
        "document": document,
        "file": filename,
        "mtime": os.path.getmtime(filename),
        "checked_at": time.monotonic(),
    })
    print(f"Portfolio saved: {filename}")
    return filename


# ------------------------------------------------------------
# Import / export
# ------------------------------------------------------------

def export_filename(now=None) -> str:
    now = pd.Timestamp(now) if now is not None else pd.Timestamp.now()
    return f"{FILE_PREFIX}{now:%Y-%m-%d}{FILE_SUFFIX}"


def export_json(document: dict) -> str:
    return json.dumps(normalize_document(document), indent=2, ensure_ascii=False)


def decode_upload(contents: str) -> dict:
    """
    Decode a dcc.Upload payload ("data:application/json;base64,...") into a
    normalised document.
    """
    if not contents:
        raise ValueError("Empty upload.")
    _, _, encoded = contents.partition(",")
    raw = base64.b64decode(encoded or contents)
    return normalize_document(json.loads(raw.decode("utf-8")))
