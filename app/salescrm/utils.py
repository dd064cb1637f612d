from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Sequence

from app.salescrm.constants import PAGE_SIZE

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
RANK_MARKS = {1: "🏆", 2: "🥈", 3: "🥉"}


def normalize_text(s: str | None) -> str:
    return (s or "").strip()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(normalize_text(email)))


def parse_int(s: str | None) -> int | None:
    s = normalize_text(s)
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        return None


def parse_page(args: Mapping[str, str | None]) -> int:
    p = parse_int(args.get("page"))
    return p if p and p > 0 else 1


def parse_flag(args: Mapping[str, str | None], name: str) -> bool:
    return normalize_text(args.get(name)).lower() in ("1", "true", "on", "yes")


def parse_amount(s: str | None) -> int:
    """Form input → whole yen. Separators and currency marks are dropped; blank → 0."""
    digits = re.sub(r"[^\d]", "", s or "")
    return int(digits) if digits else 0


def parse_date(s: str | None) -> date | None:
    s = normalize_text(s)
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def format_currency(amount: Any) -> str:
    from app.salescrm.modules.reports.metrics import to_number

    value = round(to_number(amount))
    sign = "-" if value < 0 else ""
    return f"{sign}¥{abs(value):,}"


def format_date(value: Any) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y/%m/%d")
    parsed = parse_date(str(value))
    return parsed.strftime("%Y/%m/%d") if parsed else ""


def format_axis_amount(value: Any) -> str:
    from app.salescrm.modules.reports.metrics import to_number

    v = to_number(value)
    if v >= 1_000_000:
        return f"{round(v / 1_000_000)}百万"
    if v >= 1000:
        return f"{round(v / 1000)}千"
    return str(int(v)) if float(v).is_integer() else str(v)


def rank_mark(rank: int) -> str:
    return RANK_MARKS.get(rank, "")


@dataclass(frozen=True)
class Page:
    items: list[Any]
    page: int
    per_page: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, (self.total + self.per_page - 1) // self.per_page)

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page * self.per_page < self.total


def paginate(items: Sequence[Any], page: int, per_page: int = PAGE_SIZE) -> Page:
    page = max(1, page)
    start = (page - 1) * per_page
    return Page(items=list(items[start:start + per_page]), page=page, per_page=per_page, total=len(items))
