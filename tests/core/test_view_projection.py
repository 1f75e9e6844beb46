from __future__ import annotations

import pytest

from users_core.records import Record
from users_core.view import (
    ViewState,
    all_visible_selected,
    clamp_page,
    collation_key,
    filter_and_sort,
    from_query_string,
    matches,
    page_count_for,
    project,
    prune_selection,
    to_query_string,
    toggle_page_selected,
    toggle_selected,
    toggle_sort,
    with_page_size,
    with_query,
)


def _people():
    return [
        Record(id=1, name="Jane Doe", email="Jane.Doe@X.com"),
        Record(id=2, name="bob", email="bob@y.org"),
        Record(id=3, name="Alice", email="alice@x.com"),
        Record(id=4, name="Émile", email="emile@z.fr"),
        Record(id=5, name="Carl", email="carl@y.org"),
    ]


def test_query_matches_name_or_email_case_insensitively():
    jane = _people()[0]
    assert matches(jane, "jane")
    assert matches(jane, "DOE@x")
    assert matches(jane, "  ")
    assert not matches(jane, "bob")


def test_project_is_pure():
    records = _people()
    before = list(records)
    state = ViewState(query="o", sort_direction="desc", page=2, page_size=1)
    first = project(records, state)
    assert project(records, state) == first
    assert records == before


def test_project_accepts_mapping():
    records = _people()
    by_id = {r.id: r for r in records}
    state = ViewState()
    assert project(by_id, state) == project(records, state)


def test_sort_ignores_case_and_accents():
    names = [r.name for r in filter_and_sort(_people(), ViewState())]
    assert names == ["Alice", "bob", "Carl", "Émile", "Jane Doe"]


def test_desc_is_reverse_of_asc():
    asc = filter_and_sort(_people(), ViewState(sort_key="email"))
    desc = filter_and_sort(_people(), ViewState(sort_key="email", sort_direction="desc"))
    assert desc == list(reversed(asc))


def test_sort_is_numeric_aware():
    records = [Record(id=i, name=f"item{n}", email=f"i{n}@x.com") for i, n in enumerate([10, 2, 1, 33], 1)]
    names = [r.name for r in filter_and_sort(records, ViewState())]
    assert names == ["item1", "item2", "item10", "item33"]
    assert collation_key("Item2") < collation_key("item10")


def test_sort_by_id_and_unknown_key():
    records = list(reversed(_people()))
    assert [r.id for r in filter_and_sort(records, ViewState(sort_key="id"))] == [1, 2, 3, 4, 5]
    with pytest.raises(ValueError):
        filter_and_sort(records, ViewState(sort_key="phone"))


def test_sort_is_stable_for_ties():
    records = [
        Record(id=3, name="Sam", email="a@x.com"),
        Record(id=1, name="sam", email="b@x.com"),
        Record(id=2, name="SAM", email="c@x.com"),
    ]
    assert [r.id for r in filter_and_sort(records, ViewState())] == [3, 1, 2]


def test_pagination_bounds():
    records = [Record(id=i, name=f"User {i:02d}", email=f"u{i}@x.com") for i in range(1, 21)]
    proj = project(records, ViewState(page=3, page_size=8))
    assert proj.total_count == 20
    assert proj.page_count == 3
    assert [r.id for r in proj.rows] == [17, 18, 19, 20]


def test_page_is_clamped_into_range():
    records = _people()
    assert project(records, ViewState(page=99, page_size=2)).page == 3
    assert project(records, ViewState(page=0, page_size=2)).page == 1
    assert project(records, ViewState(page=-4, page_size=2)).rows == project(records, ViewState(page_size=2)).rows


def test_empty_result_has_one_page():
    proj = project(_people(), ViewState(query="nobody"))
    assert proj.rows == ()
    assert proj.total_count == 0
    assert proj.page_count == 1
    assert proj.page == 1
    assert page_count_for(0, 8) == 1
    assert clamp_page(5, 1) == 1


def test_query_and_page_size_changes_reset_page():
    state = ViewState(page=4)
    assert with_query(state, "x").page == 1
    assert with_page_size(state, 20) == ViewState(page=1, page_size=20)
    assert with_page_size(state, 0).page_size == 1


def test_toggle_sort_flips_direction_then_switches_key_keeping_direction():
    state = ViewState()
    flipped = toggle_sort(state, "name")
    assert (flipped.sort_key, flipped.sort_direction) == ("name", "desc")
    assert toggle_sort(flipped, "name").sort_direction == "asc"
    switched = toggle_sort(flipped, "email")
    assert (switched.sort_key, switched.sort_direction) == ("email", "desc")
    assert toggle_sort(state, "id").sort_direction == "asc"
    assert toggle_sort(switched, "email").sort_direction == "asc"
    with pytest.raises(ValueError):
        toggle_sort(state, "phone")


def test_selection_helpers():
    records = _people()
    state = ViewState(page_size=2)
    proj = project(records, state)
    assert [r.id for r in proj.rows] == [3, 2]

    state = toggle_selected(state, 3)
    assert state.selected_ids == {3}
    assert not all_visible_selected(proj, state)

    state = toggle_page_selected(proj, state)
    assert state.selected_ids == {2, 3}
    assert all_visible_selected(proj, state)

    state = toggle_page_selected(proj, state)
    assert state.selected_ids == frozenset()
    assert toggle_selected(toggle_selected(state, 9), 9).selected_ids == frozenset()


def test_all_visible_selected_is_false_on_empty_page():
    state = ViewState(query="nobody", selected_ids=frozenset({1}))
    assert not all_visible_selected(project(_people(), state), state)


def test_prune_selection_drops_missing_ids():
    state = ViewState(selected_ids=frozenset({1, 2, 42}))
    pruned = prune_selection(state, _people())
    assert pruned.selected_ids == {1, 2}
    assert prune_selection(pruned, _people()) is pruned


def test_query_string_round_trip():
    state = ViewState(query="jane doe", sort_key="email", sort_direction="desc", page=3, page_size=20)
    qs = to_query_string(state)
    assert "q=jane+doe" in qs
    assert from_query_string(qs) == state
    assert from_query_string("?" + qs) == state


def test_query_string_defaults_are_compact():
    assert to_query_string(ViewState()) == "sb=name&sd=asc"
    assert from_query_string("") == ViewState()


def test_query_string_bad_values_fall_back():
    state = from_query_string("sb=phone&sd=sideways&p=abc&ps=-3&q=x")
    assert state == ViewState(query="x")
