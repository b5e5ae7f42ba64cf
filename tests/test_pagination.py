"""Tests for cursor pagination (directory/pagination.py) and the directory listing.

Covers:
- Cursor codec: opaque, URL-safe, malformed cursors rejected per field
- PageRequest.build(): limit clamping, order validation, both cursors rejected
- Forward traversal visits every row exactly once, in order (DESC and ASC)
- Backward traversal from the last page reproduces the same rows in reverse
- Cursors stay valid when rows are inserted between requests
- list_users() filters: search (escaped LIKE), is_active, role_id, company_id
"""

import base64
import json

import pytest

from core.errors import InputValidationError
from directory.models import UserListQuery
from directory.pagination import PageRequest, clamp_limit, decode_cursor, encode_cursor

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _raw_cursor(payload) -> str:
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode().rstrip("=")


def _walk_forward(directory, **query):
    """Follow after_cursor from the first page; return the list of pages (as id lists)."""
    pages = []
    page = directory.list_users(UserListQuery(**query))
    pages.append([u.id for u in page.items])
    while page.after_cursor:
        page = directory.list_users(UserListQuery(after_cursor=page.after_cursor, **query))
        pages.append([u.id for u in page.items])
    return pages, page


@pytest.fixture
def five_users(new_user, catalog) -> list[int]:
    return [new_user(f"user{i}") for i in range(1, 6)]


# ---------------------------------------------------------------------------
# Cursor codec
# ---------------------------------------------------------------------------


class TestCursorCodec:
    def test_round_trip(self):
        assert decode_cursor(encode_cursor(42)) == 42

    def test_url_safe_and_unpadded(self):
        cursor = encode_cursor(123456789)
        assert "=" not in cursor
        assert "+" not in cursor and "/" not in cursor

    @pytest.mark.parametrize(
        "cursor",
        [
            "!!!",
            "not-base64-json",
            _raw_cursor([1]),
            _raw_cursor({"id": "7"}),
            _raw_cursor({"id": True}),
            _raw_cursor({"id": 0}),
            _raw_cursor({"id": -3}),
            _raw_cursor({"id": 2**63}),
            _raw_cursor({"id": 10**30}),
            _raw_cursor({"key": 7}),
            "é",
        ],
    )
    def test_malformed_cursor_rejected(self, cursor):
        with pytest.raises(InputValidationError) as exc_info:
            decode_cursor(cursor, "after_cursor")
        assert exc_info.value.fields[0].field == "after_cursor"


# ---------------------------------------------------------------------------
# PageRequest
# ---------------------------------------------------------------------------


class TestPageRequest:
    def test_defaults(self):
        req = PageRequest.build()
        assert req.limit == 20
        assert req.order == "DESC"
        assert req.after_cursor is None and req.before_cursor is None

    @pytest.mark.parametrize("raw, expected", [(None, 20), (0, 1), (-5, 1), (1, 1), (50, 50), (1000, 100)])
    def test_clamp_limit(self, raw, expected):
        assert clamp_limit(raw) == expected

    def test_order_is_case_insensitive(self):
        assert PageRequest.build(order="asc").order == "ASC"

    def test_bad_order(self):
        with pytest.raises(InputValidationError) as exc_info:
            PageRequest.build(order="sideways")
        assert exc_info.value.fields[0].field == "order"

    def test_both_cursors_rejected(self):
        with pytest.raises(InputValidationError) as exc_info:
            PageRequest.build(after_cursor=encode_cursor(3), before_cursor=encode_cursor(5))
        assert exc_info.value.fields[0].field == "before_cursor"

    def test_empty_cursor_strings_are_absent(self):
        req = PageRequest.build(after_cursor="", before_cursor="")
        assert req.after_cursor is None and req.before_cursor is None


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


class TestTraversal:
    def test_first_page_desc(self, directory, five_users):
        page = directory.list_users(UserListQuery(limit=2))
        assert [u.id for u in page.items] == sorted(five_users, reverse=True)[:2]
        assert page.after_cursor is not None
        assert page.before_cursor is None

    def test_forward_visits_every_row_once_desc(self, directory, five_users):
        pages, last = _walk_forward(directory, limit=2)
        flat = [uid for p in pages for uid in p]
        assert flat == sorted(five_users, reverse=True)
        assert [len(p) for p in pages] == [2, 2, 1]
        assert last.after_cursor is None
        assert last.before_cursor is not None

    def test_forward_visits_every_row_once_asc(self, directory, five_users):
        pages, _ = _walk_forward(directory, limit=2, order="ASC")
        assert [uid for p in pages for uid in p] == sorted(five_users)

    def test_backward_from_last_page_reproduces_rows(self, directory, five_users):
        _, last = _walk_forward(directory, limit=2)
        seen = [u.id for u in last.items]
        page = last
        while page.before_cursor:
            page = directory.list_users(UserListQuery(limit=2, before_cursor=page.before_cursor))
            # Each page is still in the requested (DESC) order.
            ids = [u.id for u in page.items]
            assert ids == sorted(ids, reverse=True)
            seen = ids + seen
        assert seen == sorted(five_users, reverse=True)
        assert page.after_cursor is not None

    def test_backward_page_cursors(self, directory, five_users):
        ordered = sorted(five_users, reverse=True)
        # The page just before the last row: rows 3 and 4 of the DESC order.
        page = directory.list_users(UserListQuery(limit=2, before_cursor=encode_cursor(ordered[4])))
        assert [u.id for u in page.items] == ordered[2:4]
        assert decode_cursor(page.after_cursor) == ordered[3]
        assert decode_cursor(page.before_cursor) == ordered[2]

    def test_limit_larger_than_result(self, directory, five_users):
        page = directory.list_users(UserListQuery(limit=50))
        assert len(page.items) == 5
        assert page.after_cursor is None
        assert page.before_cursor is None

    def test_empty_result(self, directory, catalog):
        page = directory.list_users(UserListQuery())
        assert page.items == []
        assert page.after_cursor is None and page.before_cursor is None

    def test_insert_between_requests_does_not_shift_pages(self, directory, new_user, five_users):
        first = directory.list_users(UserListQuery(limit=2))
        new_user("latecomer")
        second = directory.list_users(UserListQuery(limit=2, after_cursor=first.after_cursor))
        assert [u.id for u in second.items] == sorted(five_users, reverse=True)[2:4]

    def test_malformed_cursor_raises(self, directory, five_users):
        with pytest.raises(InputValidationError):
            directory.list_users(UserListQuery(after_cursor="garbage"))

    def test_out_of_range_cursor_raises(self, directory, five_users):
        with pytest.raises(InputValidationError) as exc_info:
            directory.list_users(UserListQuery(after_cursor=_raw_cursor({"id": 10**30})))
        assert exc_info.value.fields[0].field == "after_cursor"

    def test_both_cursors_raise(self, directory, five_users):
        with pytest.raises(InputValidationError):
            directory.list_users(
                UserListQuery(after_cursor=encode_cursor(2), before_cursor=encode_cursor(4))
            )


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class TestListFilters:
    def test_search_matches_username_full_name_or_email(self, directory, new_user, catalog):
        a = new_user("annabel", full_name="Annabel Lee")
        b = new_user("bob", full_name="Robert Ann")
        new_user("carl", full_name="Carl Sagan")
        page = directory.list_users(UserListQuery(search="ANN"))
        assert {u.id for u in page.items} == {a, b}

    def test_search_whitespace_only_is_no_filter(self, directory, five_users):
        assert len(directory.list_users(UserListQuery(search="   ")).items) == 5

    def test_search_escapes_wildcards(self, directory, new_user, catalog):
        literal = new_user("promo", full_name="Deal 50% off")
        new_user("other", full_name="Deal 500 off")
        page = directory.list_users(UserListQuery(search="50%"))
        assert [u.id for u in page.items] == [literal]

    def test_is_active_filter(self, directory, new_user, catalog):
        active = new_user("on")
        inactive = new_user("off", is_active=False)
        assert [u.id for u in directory.list_users(UserListQuery(is_active=True)).items] == [active]
        assert [u.id for u in directory.list_users(UserListQuery(is_active=False)).items] == [inactive]
        assert len(directory.list_users(UserListQuery()).items) == 2

    def test_role_filter(self, directory, new_user, catalog):
        director = new_user("dir", role_ids=[catalog.roles["DIRECTOR"]])
        new_user("pm", role_ids=[catalog.roles["PROJECT_MANAGER"]])
        page = directory.list_users(UserListQuery(role_id=catalog.roles["DIRECTOR"]))
        assert [u.id for u in page.items] == [director]
        assert [r.name for r in page.items[0].roles] == ["DIRECTOR"]

    def test_role_filter_skips_inactive_role(self, directory, user_store, new_user, catalog):
        new_user("dir", role_ids=[catalog.roles["DIRECTOR"]])
        user_store.set_role_active(catalog.roles["DIRECTOR"], False)
        assert directory.list_users(UserListQuery(role_id=catalog.roles["DIRECTOR"])).items == []

    def test_company_filter_combined_with_role(self, directory, new_user, catalog):
        both = new_user(
            "both", role_ids=[catalog.roles["DIRECTOR"]], company_ids=[catalog.companies["ACME"]]
        )
        new_user("role_only", role_ids=[catalog.roles["DIRECTOR"]])
        new_user("company_only", company_ids=[catalog.companies["ACME"]])
        page = directory.list_users(
            UserListQuery(role_id=catalog.roles["DIRECTOR"], company_id=catalog.companies["ACME"])
        )
        assert [u.id for u in page.items] == [both]

    def test_user_with_many_memberships_listed_once(self, directory, new_user, catalog):
        uid = new_user(
            "many",
            role_ids=[catalog.roles["DIRECTOR"], catalog.roles["PROJECT_MANAGER"]],
            company_ids=list(catalog.companies.values()),
        )
        page = directory.list_users(UserListQuery(company_id=catalog.companies["GLOBEX"]))
        assert [u.id for u in page.items] == [uid]
        assert len(page.items[0].companies) == 3

    def test_filters_paginate(self, directory, new_user, catalog):
        ids = [new_user(f"acme{i}", company_ids=[catalog.companies["ACME"]]) for i in range(3)]
        new_user("outsider")
        pages, _ = _walk_forward(directory, limit=1, company_id=catalog.companies["ACME"])
        assert [uid for p in pages for uid in p] == sorted(ids, reverse=True)
