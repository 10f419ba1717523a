# Overview: Display numbers for cash settlements ("SET-{branchCode}-{YYYYMMDD}").

from __future__ import annotations

from datetime import date
from typing import Optional

from flask import current_app, has_app_context

from .settlement_sources import BranchDirectory, SqlBranchDirectory


DEFAULT_PLACEHOLDER = "XX"


def generate_settlement_number(
    branch_id: int,
    day: date,
    *,
    branches: Optional[BranchDirectory] = None,
    placeholder: Optional[str] = None,
) -> str:
    """
    Build the display number for a branch day.

    A missing branch or blank code falls back to the placeholder instead of
    failing. The number is not an identity key; (branch_id, day) is.

    `day` is the settlement's business date and is formatted as-is.
    """
    if placeholder is None:
        placeholder = (
            current_app.config.get("SETTLEMENT_NUMBER_PLACEHOLDER", DEFAULT_PLACEHOLDER)
            if has_app_context()
            else DEFAULT_PLACEHOLDER
        )
    directory = branches or SqlBranchDirectory()
    code = (directory.branch_code(branch_id) or "").strip()
    return f"SET-{code or placeholder}-{day.strftime('%Y%m%d')}"
