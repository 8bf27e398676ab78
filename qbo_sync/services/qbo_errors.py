"""Helpers that read QuickBooks fault payloads.

QuickBooks reports conflicts only through human-oriented fault messages such as::

    {"Fault": {"Error": [{"Message": "Duplicate Name Exists Error",
                          "Detail": "The name supplied already exists. : Id=1209",
                          "code": "6240"}]}}

Everything that depends on that text format lives here so it can be pinned by
tests. When an id cannot be parsed, callers fall back to a search.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from qbo_sync.core.errors import ExternalApiError


DUPLICATE_NAME_CODE = "6240"
DUPLICATE_DOC_NUMBER_CODE = "6140"

_TXN_ID_PATTERN = re.compile(r"\bTxnId=(\d+)")
_ID_PATTERN = re.compile(r"\bId=(\d+)")


@dataclass(frozen=True)
class FaultError:
    code: Optional[str]
    message: str
    detail: str


def parse_fault(body: Optional[str]) -> list[FaultError]:
    if not body:
        return []
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return []
    if not isinstance(payload, dict):
        return []
    fault = payload.get("Fault") or payload.get("fault") or {}
    errors: Any = fault.get("Error") or fault.get("error") or []
    if isinstance(errors, dict):
        errors = [errors]
    parsed: list[FaultError] = []
    for error in errors:
        if not isinstance(error, dict):
            continue
        code = error.get("code")
        parsed.append(
            FaultError(
                code=str(code) if code is not None else None,
                message=str(error.get("Message") or ""),
                detail=str(error.get("Detail") or ""),
            )
        )
    return parsed


def extract_fault_code(body: Optional[str]) -> Optional[str]:
    for error in parse_fault(body):
        if error.code:
            return error.code
    return None


def is_duplicate_name(exc: ExternalApiError) -> bool:
    if extract_fault_code(exc.body) == DUPLICATE_NAME_CODE:
        return True
    return "Duplicate Name Exists" in (exc.body or "")


def is_duplicate_document(exc: ExternalApiError) -> bool:
    if extract_fault_code(exc.body) == DUPLICATE_DOC_NUMBER_CODE:
        return True
    return "Duplicate Document Number" in (exc.body or "")


def parse_conflicting_id(body: Optional[str]) -> Optional[str]:
    """Return the id of the record a duplicate fault points at.

    ``TxnId=<n>`` wins over ``Id=<n>``: duplicate document faults name both the
    conflicting DocNumber and the transaction id.
    """
    if not body:
        return None
    texts = [f"{error.message} {error.detail}" for error in parse_fault(body)]
    texts.append(body)
    for pattern in (_TXN_ID_PATTERN, _ID_PATTERN):
        for text in texts:
            match = pattern.search(text)
            if match:
                return match.group(1)
    return None
