"""
Typed decoding of statement results into entity records.

Each record class declares a `COLUMNS` tuple mapping its fields to result
columns. Decoding fails closed: a declared column missing from the result
metadata raises DecodeError unless the column is marked optional.

Timestamps arrive as epoch seconds with up to nine decimal places, e.g.
"1616173619.000000000". TIMESTAMP_TZ values carry a trailing offset in
minutes ("1616173619.000000000 960") which is ignored; the result is UTC.
"""

import datetime
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Optional, Sequence, Type, TypeVar

import pytz

from .client import ResultSetMetadata, StatementResponse
from .enums import ROW_TYPE_TEXT, ROW_TYPE_TIMESTAMP_LTZ, ROW_TYPE_TIMESTAMP_NTZ, ROW_TYPE_TIMESTAMP_TZ, ColumnKind
from .exceptions import DecodeError

T = TypeVar("T")

ROW_NULL = "null"
SNOWFLAKE_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f %z",
    "%Y-%m-%d %H:%M:%S %z",
)

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=pytz.utc)
_TIMESTAMP_ROW_TYPES = (ROW_TYPE_TIMESTAMP_LTZ, ROW_TYPE_TIMESTAMP_NTZ, ROW_TYPE_TIMESTAMP_TZ)
_TRUE_VALUES = ("1", "t", "true")
_FALSE_VALUES = ("0", "f", "false")


@dataclass(frozen=True)
class Column:
    field: str
    column: str
    kind: ColumnKind = ColumnKind.STRING
    optional: bool = False


def parse_epoch(value: str) -> Optional[datetime.datetime]:
    if value == "":
        return None
    seconds = value.split(" ", 1)[0]
    try:
        micros = (Decimal(seconds) * 1_000_000).quantize(Decimal(1), rounding=ROUND_HALF_EVEN)
    except InvalidOperation as err:
        raise DecodeError(f"failed to parse timestamp value {value!r}") from err
    return _EPOCH + datetime.timedelta(microseconds=int(micros))


def parse_snowflake_datetime(value: str) -> Optional[datetime.datetime]:
    """
    Parse the formatted timestamps DESCRIBE USER returns, e.g.
    "2024-03-01 10:15:30.123". Naive values are taken as UTC.
    """
    if value == "" or value.lower() == ROW_NULL:
        return None
    for fmt in SNOWFLAKE_DATETIME_FORMATS:
        try:
            parsed = datetime.datetime.strptime(value, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            return pytz.utc.localize(parsed)
        return parsed.astimezone(pytz.utc)
    raise DecodeError(f"failed to parse datetime value {value!r}")


def parse_bool(value: str) -> bool:
    # Null cells arrive as ""
    if value == "":
        return False
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise DecodeError(f"invalid boolean value {value!r}")


def _decode_cell(column: Column, row_type: str, value: str):
    if column.kind == ColumnKind.TIMESTAMP:
        if row_type not in _TIMESTAMP_ROW_TYPES:
            raise DecodeError(f"column {column.column} is not a timestamp ltz (row type is '{row_type}')")
        return parse_epoch(value)

    if row_type != ROW_TYPE_TEXT:
        raise DecodeError(f"column {column.column} is not a string (row type is '{row_type}')")
    if column.kind == ColumnKind.BOOL:
        return parse_bool(value)
    return value


def decode_row(metadata: ResultSetMetadata, row: Sequence[str], record_cls: Type[T]) -> T:
    values = {}
    for column in record_cls.COLUMNS:
        index, row_type = metadata.index_of(column.column)
        if row_type is None:
            if column.optional:
                continue
            raise DecodeError(f"row type {column.column} not found")
        if index >= len(row):
            raise DecodeError(f"row has {len(row)} cells, column {column.column} is at {index}")
        values[column.field] = _decode_cell(column, row_type.type, row[index])
    return record_cls(**values)


def decode_rows(response: StatementResponse, record_cls: Type[T]) -> list[T]:
    return [decode_row(response.result_set_metadata, row, record_cls) for row in response.data]


def _describe_properties(response: StatementResponse) -> dict[str, str]:
    metadata = response.result_set_metadata
    property_idx, _ = metadata.index_of("property")
    value_idx, _ = metadata.index_of("value")
    if property_idx < 0 or value_idx < 0:
        property_idx, value_idx = 0, 1

    properties = {}
    for row in response.data:
        if len(row) <= max(property_idx, value_idx):
            raise DecodeError(f"DESCRIBE row has {len(row)} cells, expected property and value")
        properties.setdefault(row[property_idx].upper(), row[value_idx])
    return properties


def decode_describe(response: StatementResponse, record_cls: Type[T], skip: Sequence[str] = ()) -> T:
    """
    Pivot a DESCRIBE result (one property/value row per attribute) into a record.

    Property names are matched case-insensitively against the record's column
    names. Fields named in `skip` are left at their defaults.
    """
    properties = _describe_properties(response)

    values = {}
    for column in record_cls.COLUMNS:
        if column.field in skip:
            continue
        key = column.column.upper()
        if key not in properties:
            if column.optional:
                continue
            raise DecodeError(f"column {key} not found")

        value = properties[key]
        if column.kind == ColumnKind.BOOL:
            values[column.field] = value.lower() == "true"
        elif column.kind == ColumnKind.TIMESTAMP:
            values[column.field] = parse_snowflake_datetime(value)
        elif value.lower() == ROW_NULL:
            # DESCRIBE renders unset properties as the literal "null"
            values[column.field] = ""
        else:
            values[column.field] = value
    return record_cls(**values)
