"""Shared reference number generation.

Format tokens:
  {date}       → YYYYMMDD
  {seq:N}      → zero-padded sequence number, N digits, resets daily per prefix

Formats:
  deposit:   DEP-{date}-{seq:3}
  payment:   PAY-{date}-{seq:4}
"""

import re
from datetime import date

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_FORMATS = {
    "deposit": "DEP-{date}-{seq:3}",
    "payment": "PAY-{date}-{seq:4}",
}

# Map entity types to their table and code column for counting
ENTITY_TABLE_MAP = {
    "deposit": ("deposit_batches", "deposit_ref"),
    "payment": ("payments", "payment_ref"),
}


def _build_prefix(fmt: str, date_str: str) -> str:
    """Build the prefix portion of the code (everything before {seq:N}).

    Returns the static prefix so we can count existing codes with this prefix.
    """
    prefix = fmt.replace("{date}", date_str)
    # Remove the {seq:N} part and everything after it
    prefix = re.sub(r"\{seq:\d+\}.*$", "", prefix)
    return prefix


async def _count_existing(db: AsyncSession, entity: str, prefix: str) -> int:
    """Count existing codes with the given prefix."""
    table_name, column_name = ENTITY_TABLE_MAP[entity]
    result = await db.execute(
        text(
            f"SELECT COUNT(*) FROM {table_name} WHERE {column_name} LIKE :prefix"
        ).bindparams(prefix=f"{prefix}%")
    )
    return result.scalar() or 0


async def generate_code(
    db: AsyncSession,
    entity: str,
    on: date | None = None,
) -> str:
    """Generate a sequential code.

    Args:
        db: Database session (tenant-scoped)
        entity: One of "deposit", "payment"
        on: Date embedded in the code (defaults to today)

    Returns:
        Generated code string, e.g. "DEP-20260219-001"
    """
    fmt = DEFAULT_FORMATS[entity]
    date_str = (on or date.today()).strftime("%Y%m%d")

    prefix = _build_prefix(fmt, date_str)

    count = await _count_existing(db, entity, prefix)
    seq_num = count + 1

    # Extract sequence digit width from format
    seq_match = re.search(r"\{seq:(\d+)\}", fmt)
    seq_width = int(seq_match.group(1)) if seq_match else 3

    code = fmt.replace("{date}", date_str)
    code = re.sub(r"\{seq:\d+\}", f"{seq_num:0{seq_width}d}", code)

    return code
