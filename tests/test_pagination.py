"""Unit tests for snowgrant/pagination.py

Tests token encoding and the schema-by-schema table walk.
"""

import base64
import json

import pytest

from conftest import SCHEMA_COLUMNS, TABLE_COLUMNS, result, schema_row, table_row
from snowgrant.exceptions import InvalidPageTokenError
from snowgrant.pagination import (
    FlatCursor,
    NestedCursor,
    PageFrame,
    TablePager,
    decode_flat_token,
    decode_nested_token,
    decode_token,
    encode_token,
    next_flat_token,
    next_offset_token,
    parse_offset_token,
)


def walk(pager, ctx, database, page_size, shared=False):
    pages = []
    token = ""
    while True:
        page = pager.page(ctx, database, token, page_size, shared=shared)
        pages.append(page)
        token = page.next_token
        if not token:
            return pages
        assert len(pages) < 50, "pagination did not terminate"


# =============================================================================
# Tokens
# =============================================================================


class TestTokens:
    """Tests for page token encoding."""

    def test_empty_cursors_encode_to_empty_token(self):
        assert encode_token(FlatCursor()) == ""
        assert encode_token(NestedCursor()) == ""

    def test_empty_token_decodes_to_none(self):
        assert decode_token("") is None
        assert decode_flat_token("") == ""
        assert decode_nested_token("") is None

    def test_flat_token(self):
        assert decode_flat_token(encode_token(FlatCursor("ALICE"))) == "ALICE"

    def test_nested_token_keeps_frame_order(self):
        cursor = NestedCursor([PageFrame("B"), PageFrame("A", shared=True, cursor="t1")])
        decoded = decode_nested_token(encode_token(cursor))
        assert decoded == cursor
        assert decoded.peek() == PageFrame("A", shared=True, cursor="t1")

    def test_token_is_urlsafe_json(self):
        token = encode_token(FlatCursor("x"))
        assert json.loads(base64.urlsafe_b64decode(token)) == {"cursor": "x", "kind": "flat"}

    @pytest.mark.parametrize(
        "token",
        [
            "not base64!!",
            base64.urlsafe_b64encode(b"[1, 2]").decode(),
            base64.urlsafe_b64encode(b'{"kind": "other"}').decode(),
            base64.urlsafe_b64encode(b'{"kind": "nested"}').decode(),
            base64.urlsafe_b64encode(b'{"kind": "flat"}').decode(),
        ],
    )
    def test_invalid_tokens_raise(self, token):
        with pytest.raises(InvalidPageTokenError):
            decode_token(token)

    def test_kind_mismatch_raises(self):
        nested = encode_token(NestedCursor([PageFrame("A")]))
        with pytest.raises(InvalidPageTokenError):
            decode_flat_token(nested)
        with pytest.raises(InvalidPageTokenError):
            decode_nested_token(encode_token(FlatCursor("x")))


class TestNestedCursor:
    def test_advance_keeps_frame_with_cursor(self):
        cursor = NestedCursor([PageFrame("B"), PageFrame("A")])
        cursor.advance("t1")
        assert cursor.peek() == PageFrame("A", cursor="t1")

    def test_advance_pops_exhausted_frame(self):
        cursor = NestedCursor([PageFrame("B"), PageFrame("A")])
        cursor.advance("")
        assert cursor.peek() == PageFrame("B")

    def test_pop_empty(self):
        assert NestedCursor().pop() is None


class TestFlatAndOffsetTokens:
    def test_short_page_ends(self):
        assert next_flat_token(["a"], 2, key=str) == ""

    def test_full_page_continues_from_last_key(self):
        assert decode_flat_token(next_flat_token(["a", "b"], 2, key=str.upper)) == "B"

    def test_offsets(self):
        token = next_offset_token(count=50, limit=50, offset=100)
        assert parse_offset_token(token) == 150
        assert next_offset_token(count=10, limit=50, offset=150) == ""
        assert parse_offset_token("") == 0

    @pytest.mark.parametrize("cursor", ["abc", "-5"])
    def test_bad_offsets_raise(self, cursor):
        with pytest.raises(InvalidPageTokenError):
            parse_offset_token(encode_token(FlatCursor(cursor)))


# =============================================================================
# TablePager
# =============================================================================


class TestTablePager:
    """Tests for walking the tables of a database schema by schema."""

    def setup_schemas(self, warehouse, *names):
        rows = [schema_row(name, "RAW") for name in names]
        warehouse.on("SHOW SCHEMAS IN DATABASE", result(SCHEMA_COLUMNS, rows))

    def test_walks_schemas_in_listed_order(self, client, warehouse, ctx):
        self.setup_schemas(warehouse, "INFORMATION_SCHEMA", "A", "B")
        warehouse.on('IN SCHEMA "RAW"."A"', result(TABLE_COLUMNS, [table_row("T1", "A", "RAW")]))
        warehouse.on('IN SCHEMA "RAW"."B"', result(TABLE_COLUMNS, [table_row("T2", "B", "RAW")]))

        pages = walk(TablePager(client), ctx, "RAW", page_size=10)
        assert [[t.id for t in p.tables] for p in pages] == [["RAW.A.T1"], ["RAW.B.T2"]]
        assert not warehouse.executed("INFORMATION_SCHEMA")

    def test_page_sequence_with_cursor_and_empty_schema(self, client, warehouse, ctx):
        # A holds t1 and t2 with page size 1, B is empty, C holds t3
        self.setup_schemas(warehouse, "A", "B", "C")
        warehouse.on(
            'IN SCHEMA "RAW"."A"',
            result(TABLE_COLUMNS, [table_row("t1", "A", "RAW")]),
            result(TABLE_COLUMNS, [table_row("t2", "A", "RAW")]),
            result(TABLE_COLUMNS),
        )
        warehouse.on('IN SCHEMA "RAW"."B"', result(TABLE_COLUMNS))
        warehouse.on(
            'IN SCHEMA "RAW"."C"',
            result(TABLE_COLUMNS, [table_row("t3", "C", "RAW")]),
            result(TABLE_COLUMNS),
        )

        pages = walk(TablePager(client), ctx, "RAW", page_size=1)
        assert [[t.name for t in p.tables] for p in pages] == [["t1"], ["t2"], ["t3"], []]
        assert pages[-1].next_token == ""
        assert warehouse.executed("LIMIT 1 FROM 't1'")

    def test_schema_a_is_exhausted_before_schema_b(self, client, warehouse, ctx):
        self.setup_schemas(warehouse, "A", "B")
        warehouse.on(
            'IN SCHEMA "RAW"."A"',
            result(TABLE_COLUMNS, [table_row("t1", "A", "RAW")]),
            result(TABLE_COLUMNS),
        )
        warehouse.on(
            'IN SCHEMA "RAW"."B"',
            result(TABLE_COLUMNS, [table_row("t2", "B", "RAW")]),
            result(TABLE_COLUMNS, [table_row("t3", "B", "RAW")]),
            result(TABLE_COLUMNS),
        )

        pages = walk(TablePager(client), ctx, "RAW", page_size=1)
        assert [[t.name for t in p.tables] for p in pages] == [["t1"], ["t2"], ["t3"], []]

    def test_every_table_appears_exactly_once(self, client, warehouse, ctx):
        self.setup_schemas(warehouse, "A", "B")
        a_tables = [table_row(f"A{i}", "A", "RAW") for i in range(5)]
        warehouse.on(
            'IN SCHEMA "RAW"."A"',
            result(TABLE_COLUMNS, a_tables[:2]),
            result(TABLE_COLUMNS, a_tables[2:4]),
            result(TABLE_COLUMNS, a_tables[4:]),
        )
        warehouse.on('IN SCHEMA "RAW"."B"', result(TABLE_COLUMNS, [table_row("B0", "B", "RAW")]))

        pages = walk(TablePager(client), ctx, "RAW", page_size=2)
        ids = [t.id for p in pages for t in p.tables]
        assert ids == ["RAW.A.A0", "RAW.A.A1", "RAW.A.A2", "RAW.A.A3", "RAW.A.A4", "RAW.B.B0"]

    def test_same_token_gives_same_page(self, client, warehouse, ctx):
        self.setup_schemas(warehouse, "A", "B")
        warehouse.on('IN SCHEMA "RAW"."A"', result(TABLE_COLUMNS, [table_row("T1", "A", "RAW")]))
        warehouse.on('IN SCHEMA "RAW"."B"', result(TABLE_COLUMNS, [table_row("T2", "B", "RAW")]))

        pager = TablePager(client)
        token = pager.page(ctx, "RAW", "", 10).next_token
        first = pager.page(ctx, "RAW", token, 10)
        second = pager.page(ctx, "RAW", token, 10)
        assert first == second
        assert [t.name for t in first.tables] == ["T2"]

    def test_denied_schema_is_skipped(self, client, warehouse, ctx):
        self.setup_schemas(warehouse, "LOCKED", "OPEN")
        warehouse.on_error('IN SCHEMA "RAW"."LOCKED"')
        warehouse.on('IN SCHEMA "RAW"."OPEN"', result(TABLE_COLUMNS, [table_row("T1", "OPEN", "RAW")]))

        pages = walk(TablePager(client), ctx, "RAW", page_size=10)
        assert [[t.name for t in p.tables] for p in pages] == [["T1"]]

    def test_shared_flag_travels_in_token(self, client, warehouse, ctx):
        self.setup_schemas(warehouse, "A", "B")
        warehouse.on('IN SCHEMA "RAW"."A"', result(TABLE_COLUMNS, [table_row("T1", "A", "RAW")]))
        warehouse.on('IN SCHEMA "RAW"."B"', result(TABLE_COLUMNS, [table_row("T2", "B", "RAW")]))

        pager = TablePager(client)
        first = pager.page(ctx, "RAW", "", 10, shared=True)
        second = pager.page(ctx, "RAW", first.next_token, 10, shared=False)
        assert first.shared and second.shared

    def test_database_without_schemas(self, client, warehouse, ctx):
        self.setup_schemas(warehouse)
        page = TablePager(client).page(ctx, "RAW")
        assert page.tables == [] and page.next_token == ""

    def test_invalid_token_raises(self, client, ctx):
        with pytest.raises(InvalidPageTokenError):
            TablePager(client).page(ctx, "RAW", "garbage")
