import math
import re
from typing import NamedTuple, Optional

ALLOWED_PAGE_LIMITS = (1, 2, 3, 5, 10, 20, 30, 40, 60)
DEFAULT_PAGE_LIMIT = 20

_leading_int = re.compile(r"^\s*([+-]?\d+)")


class PageInfo(NamedTuple):
    page_num: int
    page_limit: int
    page_skip: int


def parse_int(value) -> Optional[int]:
    """Parse the leading integer of a query value ("2.9" -> 2, "abc" -> None)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = _leading_int.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def is_valid_limit(value: Optional[int]) -> bool:
    return value in ALLOWED_PAGE_LIMITS


def resolve_page_info(page, limit, default_limit: int = DEFAULT_PAGE_LIMIT) -> PageInfo:
    """Translate untrusted page/limit values into a bounded skip/limit pair.

    The page falls back to 1 when absent, non-numeric or below 1. The limit
    must be one of ``ALLOWED_PAGE_LIMITS``; anything else resolves to
    ``default_limit``.
    """
    if not is_valid_limit(default_limit):
        default_limit = DEFAULT_PAGE_LIMIT

    page_num = parse_int(page)
    if page_num is None or page_num < 1:
        page_num = 1

    page_limit = parse_int(limit)
    if not is_valid_limit(page_limit):
        page_limit = default_limit

    return PageInfo(page_num, page_limit, (page_num - 1) * page_limit)


def count_total_pages(records_count: int, page_limit: int) -> int:
    if records_count <= 0 or page_limit <= 0:
        return 1
    return max(1, math.ceil(records_count / page_limit))


def is_page_out_of_range(page_info: PageInfo, records_count: int) -> bool:
    return page_info.page_num > 1 and page_info.page_skip >= records_count
