from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, List, Mapping, Tuple, Union
from urllib.parse import parse_qsl, urlencode

from .records import FIELDS, Record

DEFAULT_PAGE_SIZE = 8
DEFAULT_SORT_KEY = "name"
SORT_DIRECTIONS = ("asc", "desc")

_DIGITS_RE = re.compile(r"(\d+)")

Records = Union[Mapping[int, Record], Iterable[Record]]


@dataclass(frozen=True)
class ViewState:
    query: str = ""
    sort_key: str = DEFAULT_SORT_KEY
    sort_direction: str = "asc"
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    selected_ids: FrozenSet[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Projection:
    rows: Tuple[Record, ...]
    total_count: int
    page_count: int
    page: int


def collation_key(value: str) -> Tuple[Tuple[int, int, str], ...]:
    """Case/accent-insensitive, numeric-aware sort key ("item2" < "item10")."""
    folded = unicodedata.normalize("NFKD", value)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch)).casefold()
    parts = []
    for chunk in _DIGITS_RE.split(folded):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk), chunk))
        else:
            parts.append((1, 0, chunk))
    return tuple(parts)


def _values(records: Records) -> List[Record]:
    if isinstance(records, Mapping):
        return list(records.values())
    return list(records)


def matches(record: Record, query: str) -> bool:
    q = query.strip().casefold()
    if not q:
        return True
    return q in record.name.casefold() or q in record.email.casefold()


def _sort_key_fn(sort_key: str):
    if sort_key == "id":
        return lambda r: r.id
    if sort_key not in FIELDS:
        raise ValueError(f"unsupported sort key {sort_key!r}")
    return lambda r: collation_key(getattr(r, sort_key))


def page_count_for(total: int, page_size: int) -> int:
    return max(1, math.ceil(total / max(1, int(page_size))))


def clamp_page(page: int, page_count: int) -> int:
    return min(max(1, int(page)), page_count)


def filter_and_sort(records: Records, state: ViewState) -> List[Record]:
    filtered = [r for r in _values(records) if matches(r, state.query)]
    # sorted() is stable in both directions, so ties keep their input order.
    return sorted(
        filtered,
        key=_sort_key_fn(state.sort_key),
        reverse=state.sort_direction == "desc",
    )


def project(records: Records, state: ViewState) -> Projection:
    """Derive the visible slice: filter, then sort, then paginate."""
    ordered = filter_and_sort(records, state)
    page_size = max(1, int(state.page_size))
    pages = page_count_for(len(ordered), page_size)
    page = clamp_page(state.page, pages)
    start = (page - 1) * page_size
    return Projection(
        rows=tuple(ordered[start : start + page_size]),
        total_count=len(ordered),
        page_count=pages,
        page=page,
    )


# -- state transitions -----------------------------------------------------------


def with_query(state: ViewState, query: str) -> ViewState:
    return replace(state, query=query, page=1)


def toggle_sort(state: ViewState, sort_key: str) -> ViewState:
    if sort_key not in FIELDS:
        raise ValueError(f"unsupported sort key {sort_key!r}")
    if state.sort_key == sort_key:
        direction = "desc" if state.sort_direction == "asc" else "asc"
        return replace(state, sort_direction=direction)
    return replace(state, sort_key=sort_key)


def with_page_size(state: ViewState, page_size: int) -> ViewState:
    return replace(state, page_size=max(1, int(page_size)), page=1)


def toggle_selected(state: ViewState, record_id: int) -> ViewState:
    if record_id in state.selected_ids:
        return replace(state, selected_ids=state.selected_ids - {record_id})
    return replace(state, selected_ids=state.selected_ids | {record_id})


def all_visible_selected(projection: Projection, state: ViewState) -> bool:
    return bool(projection.rows) and all(r.id in state.selected_ids for r in projection.rows)


def toggle_page_selected(projection: Projection, state: ViewState) -> ViewState:
    page_ids = {r.id for r in projection.rows}
    if all_visible_selected(projection, state):
        return replace(state, selected_ids=state.selected_ids - page_ids)
    return replace(state, selected_ids=state.selected_ids | page_ids)


def prune_selection(state: ViewState, records: Records) -> ViewState:
    present = {r.id for r in _values(records)}
    kept = frozenset(i for i in state.selected_ids if i in present)
    if kept == state.selected_ids:
        return state
    return replace(state, selected_ids=kept)


# -- URL sync --------------------------------------------------------------------


def to_query_string(state: ViewState) -> str:
    params = []
    if state.query:
        params.append(("q", state.query))
    params.append(("sb", state.sort_key))
    params.append(("sd", state.sort_direction))
    if state.page != 1:
        params.append(("p", str(state.page)))
    if state.page_size != DEFAULT_PAGE_SIZE:
        params.append(("ps", str(state.page_size)))
    return urlencode(params)


def _parse_positive(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= 1 else default


def from_query_string(qs: str) -> ViewState:
    """Rebuild view state from `to_query_string` output; bad values fall back to defaults."""
    if qs.startswith("?"):
        qs = qs[1:]
    params = {k: v for k, v in parse_qsl(qs, keep_blank_values=True) if k}
    sort_key = params.get("sb", DEFAULT_SORT_KEY)
    if sort_key not in FIELDS:
        sort_key = DEFAULT_SORT_KEY
    direction = params.get("sd", "asc")
    if direction not in SORT_DIRECTIONS:
        direction = "asc"
    return ViewState(
        query=params.get("q", ""),
        sort_key=sort_key,
        sort_direction=direction,
        page=_parse_positive(params.get("p"), 1),
        page_size=_parse_positive(params.get("ps"), DEFAULT_PAGE_SIZE),
    )
