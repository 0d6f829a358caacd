"""
Page tokens for flat and nested listings.

Flat listings (users, roles, databases) resume a `SHOW ... LIMIT n FROM '<key>'`
from the last key seen. Nested listings (tables within the schemas of a
database) keep a stack of frames, one per schema still to visit:

    frames = [PageFrame("B"), PageFrame("A", cursor="t1")]   # A on top

All state lives in the token handed back to the host; nothing is kept between
calls. The empty token means "start" on input and "done" on output.
"""

import base64
import binascii
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional, Sequence, Union

from . import data_provider
from .client import SnowflakeClient
from .context import CallContext
from .exceptions import InvalidPageTokenError, PermissionDeniedError
from .resources import Table

logger = logging.getLogger("snowgrant")

FLAT = "flat"
NESTED = "nested"


@dataclass
class FlatCursor:
    cursor: str = ""


@dataclass
class PageFrame:
    scope: str
    shared: bool = False
    cursor: str = ""


@dataclass
class NestedCursor:
    frames: list[PageFrame] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.frames

    def push(self, frame: PageFrame):
        self.frames.append(frame)

    def peek(self) -> Optional[PageFrame]:
        return self.frames[-1] if self.frames else None

    def pop(self) -> Optional[PageFrame]:
        return self.frames.pop() if self.frames else None

    def advance(self, next_cursor: str):
        """
        Move past the page just read from the top frame: drop the frame when
        its scope is exhausted, otherwise remember where to resume.
        """
        if not self.frames:
            return
        if next_cursor:
            self.frames[-1].cursor = next_cursor
        else:
            self.frames.pop()

    def token(self) -> str:
        return encode_token(self)


PageCursor = Union[FlatCursor, NestedCursor]


def encode_token(cursor: PageCursor) -> str:
    if isinstance(cursor, FlatCursor):
        if not cursor.cursor:
            return ""
        payload = {"kind": FLAT, "cursor": cursor.cursor}
    elif isinstance(cursor, NestedCursor):
        if cursor.empty:
            return ""
        payload = {"kind": NESTED, "frames": [asdict(frame) for frame in cursor.frames]}
    else:
        raise TypeError(f"Unknown cursor type: {type(cursor)}")
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_token(token: str) -> Optional[PageCursor]:
    if not token:
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as err:
        raise InvalidPageTokenError(f"invalid page token {token!r}") from err
    if not isinstance(payload, dict):
        raise InvalidPageTokenError(f"invalid page token {token!r}")

    kind = payload.get("kind")
    try:
        if kind == FLAT:
            return FlatCursor(cursor=str(payload["cursor"]))
        if kind == NESTED:
            return NestedCursor(
                frames=[
                    PageFrame(scope=str(f["scope"]), shared=bool(f.get("shared", False)), cursor=str(f.get("cursor", "")))
                    for f in payload["frames"]
                ]
            )
    except (KeyError, TypeError) as err:
        raise InvalidPageTokenError(f"malformed {kind} page token") from err
    raise InvalidPageTokenError(f"unknown page token kind {kind!r}")


def decode_flat_token(token: str) -> str:
    cursor = decode_token(token)
    if cursor is None:
        return ""
    if not isinstance(cursor, FlatCursor):
        raise InvalidPageTokenError("expected a flat page token")
    return cursor.cursor


def decode_nested_token(token: str) -> Optional[NestedCursor]:
    cursor = decode_token(token)
    if cursor is not None and not isinstance(cursor, NestedCursor):
        raise InvalidPageTokenError("expected a nested page token")
    return cursor


def next_flat_token(records: Sequence, limit: int, key: Callable) -> str:
    if not records or len(records) < limit:
        return ""
    return encode_token(FlatCursor(cursor=key(records[-1])))


def parse_offset_token(token: str) -> int:
    cursor = decode_flat_token(token)
    if not cursor:
        return 0
    try:
        offset = int(cursor)
    except ValueError as err:
        raise InvalidPageTokenError(f"invalid offset {cursor!r}") from err
    if offset < 0:
        raise InvalidPageTokenError(f"invalid offset {offset}")
    return offset


def next_offset_token(count: int, limit: int, offset: int) -> str:
    if count < limit:
        return ""
    return encode_token(FlatCursor(cursor=str(offset + count)))


@dataclass
class TablePage:
    tables: list[Table]
    shared: bool
    next_token: str


class TablePager:
    """
    Walks the tables of one database, schema by schema.

    The first call lists the schemas (INFORMATION_SCHEMA excluded) and pushes
    them in reverse so the first schema is on top. Every call then reads one
    page from the top frame; a frame whose scope yields an empty page is
    dropped and the next one is read in the same call, so empty pages are only
    returned at the end of the walk.
    """

    def __init__(self, client: SnowflakeClient):
        self.client = client

    def _start(self, ctx: CallContext, database: str, shared: bool) -> NestedCursor:
        schemas = data_provider.list_schemas_in_database(self.client, ctx, database)
        stack = NestedCursor()
        for schema in reversed(schemas):
            if schema.is_information_schema:
                continue
            stack.push(PageFrame(scope=schema.name, shared=shared))
        return stack

    def page(
        self,
        ctx: CallContext,
        database: str,
        token: str = "",
        page_size: int = 200,
        shared: bool = False,
    ) -> TablePage:
        stack = decode_nested_token(token)
        if stack is None:
            stack = self._start(ctx, database, shared)

        while not stack.empty:
            frame = stack.peek()
            try:
                tables, next_cursor = data_provider.list_tables_in_schema(
                    self.client, ctx, database, frame.scope, frame.cursor, page_size
                )
            except PermissionDeniedError as err:
                logger.debug(f"skipping schema {database}.{frame.scope}: {err}")
                tables, next_cursor = [], ""

            stack.advance(next_cursor)
            if tables:
                return TablePage(tables=tables, shared=frame.shared, next_token=stack.token())

        return TablePage(tables=[], shared=shared, next_token="")
