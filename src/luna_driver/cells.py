"""
Result Type Mapping

Maps Arrow column types to Python values through a registry of decode
functions keyed by a type tag:

- null -> None (columns holding only NULLs)
- bool, int8..int64, uint8..uint64 -> bool / int
- float32, float64 -> float
- string -> str, binary -> bytes
- date32, date64 -> datetime.date
- timestamp -> timezone-aware datetime (UTC) using the declared unit
- decimal128, decimal256 -> str with exactly `scale` fractional digits

Null cells are always None, whatever the declared type. Columns with an
unregistered tag fail the query with DecodeError.
"""

import datetime
from typing import Any, Callable, Dict, List, Optional

import pyarrow as pa
import structlog

from .errors import DecodeError

logger = structlog.get_logger()

CellDecoder = Callable[[pa.Array, int], Any]

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
EPOCH_DATE = datetime.date(1970, 1, 1)

# Microseconds per timestamp unit tick (ns is divided instead)
_UNIT_MICROS = {
    's': 1_000_000,
    'ms': 1_000,
    'us': 1,
}

# Tag -> predicate, checked in order
_TAG_PREDICATES = [
    ('null', pa.types.is_null),
    ('bool', pa.types.is_boolean),
    ('int8', pa.types.is_int8),
    ('int16', pa.types.is_int16),
    ('int32', pa.types.is_int32),
    ('int64', pa.types.is_int64),
    ('uint8', pa.types.is_uint8),
    ('uint16', pa.types.is_uint16),
    ('uint32', pa.types.is_uint32),
    ('uint64', pa.types.is_uint64),
    ('float32', pa.types.is_float32),
    ('float64', pa.types.is_float64),
    ('string', pa.types.is_string),
    ('binary', pa.types.is_binary),
    ('date32', pa.types.is_date32),
    ('date64', pa.types.is_date64),
    ('timestamp', pa.types.is_timestamp),
    ('decimal128', pa.types.is_decimal128),
    ('decimal256', pa.types.is_decimal256),
]


def type_tag(arrow_type: pa.DataType) -> Optional[str]:
    """Return the registry tag for an Arrow type, or None if it has none"""
    for tag, predicate in _TAG_PREDICATES:
        if predicate(arrow_type):
            return tag
    return None


def format_decimal(unscaled: int, scale: int) -> str:
    """
    Render unscaled * 10^-scale with exactly `scale` fractional digits.

    >>> format_decimal(-12345, 2)
    '-123.45'
    >>> format_decimal(5, 3)
    '0.005'
    """
    sign = '-' if unscaled < 0 else ''
    digits = str(abs(unscaled))
    if scale <= 0:
        return sign + digits + '0' * -scale if unscaled else '0'

    digits = digits.rjust(scale + 1, '0')
    return f"{sign}{digits[:-scale]}.{digits[-scale:]}"


def _decimal_unscaled(value, scale: int) -> int:
    # as_tuple keeps every digit; Decimal arithmetic would round at 28 digits
    sign, digits, exponent = value.as_tuple()
    unscaled = int(''.join(str(d) for d in digits) or '0')
    shift = exponent + scale
    if shift >= 0:
        unscaled *= 10 ** shift
    else:
        unscaled //= 10 ** -shift
    return -unscaled if sign else unscaled


def _scalar_value(column: pa.Array, row: int) -> Any:
    return column[row].as_py()


def _decode_date32(column: pa.Array, row: int) -> datetime.date:
    days = column[row].value
    return EPOCH_DATE + datetime.timedelta(days=days)


def _decode_date64(column: pa.Array, row: int) -> datetime.date:
    millis = column[row].value
    return (EPOCH + datetime.timedelta(milliseconds=millis)).date()


def _decode_timestamp(column: pa.Array, row: int) -> datetime.datetime:
    unit = column.type.unit
    ticks = column[row].value
    if unit == 'ns':
        micros = ticks // 1_000
    else:
        micros = ticks * _UNIT_MICROS[unit]
    return EPOCH + datetime.timedelta(microseconds=micros)


def _decode_decimal(column: pa.Array, row: int) -> str:
    scale = column.type.scale
    return format_decimal(_decimal_unscaled(column[row].as_py(), scale), scale)


class CellDecoderRegistry:
    """
    Registry of per-type cell decoders

    New types are supported by registering a decoder for their tag; the
    row extraction loop does not change.
    """

    def __init__(self):
        self._decoders: Dict[str, CellDecoder] = {}
        self._register_defaults()

    def _register_defaults(self):
        self.register('null', lambda column, row: None)
        for tag in ('bool', 'int8', 'int16', 'int32', 'int64',
                    'uint8', 'uint16', 'uint32', 'uint64',
                    'float32', 'float64', 'string', 'binary'):
            self.register(tag, _scalar_value)
        self.register('date32', _decode_date32)
        self.register('date64', _decode_date64)
        self.register('timestamp', _decode_timestamp)
        self.register('decimal128', _decode_decimal)
        self.register('decimal256', _decode_decimal)

    def register(self, tag: str, decoder: CellDecoder):
        self._decoders[tag] = decoder

    def has_decoder(self, tag: Optional[str]) -> bool:
        return tag in self._decoders

    def get_decoder(self, arrow_type: pa.DataType) -> CellDecoder:
        """
        Look up the decoder for an Arrow type.

        Raises:
            DecodeError: If the type has no registered decoder
        """
        decoder = self._decoders.get(type_tag(arrow_type))
        if decoder is None:
            raise DecodeError(f"unsupported Arrow type: {arrow_type}")
        return decoder

    def validate_schema(self, schema: pa.Schema):
        """Raise DecodeError for the first column without a decoder"""
        for field in schema:
            if not self.has_decoder(type_tag(field.type)):
                raise DecodeError(f"unsupported Arrow type: {field.type} (column {field.name!r})")

    def decode_cell(self, column: pa.Array, row: int) -> Any:
        if not column[row].is_valid:
            return None
        decoder = self.get_decoder(column.type)
        try:
            return decoder(column, row)
        except (OverflowError, ValueError) as e:
            # e.g. dates and timestamps outside datetime's year 1..9999
            raise DecodeError(f"cannot decode {column.type} value at row {row}: {e}") from e

    def decode_row(self, batch: pa.RecordBatch, row: int) -> List[Any]:
        return [self.decode_cell(column, row) for column in batch.columns]


_default_registry = None


def get_registry() -> CellDecoderRegistry:
    """Get the shared cell decoder registry"""
    global _default_registry
    if _default_registry is None:
        _default_registry = CellDecoderRegistry()
        logger.debug("cell decoder registry initialized", tags=len(_default_registry._decoders))
    return _default_registry


__all__ = ['CellDecoderRegistry', 'get_registry', 'type_tag', 'format_decimal']
