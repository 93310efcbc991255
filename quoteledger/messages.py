"""Wire messages of the quote ledger service and the stored event encoding."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from typing import Union

from quoteledger.errors import CorruptPayload


@dataclass(frozen=True)
class CreateQuote:
    currency_code: str = ""
    jurisdiction_id: str = ""


@dataclass(frozen=True)
class AddLineItem:
    line_id: str = ""
    sku: str = ""
    description: str = ""
    quantity: int = 0
    unit_minor: int = 0


@dataclass(frozen=True)
class FinalizeQuote:
    pass


@dataclass(frozen=True)
class QuoteCommand:
    kind: Union[CreateQuote, AddLineItem, FinalizeQuote, None] = None


@dataclass(frozen=True)
class QuoteCreated:
    currency_code: str = ""
    jurisdiction_id: str = ""


@dataclass(frozen=True)
class LineItemAdded:
    line_id: str = ""
    sku: str = ""
    description: str = ""
    quantity: int = 0
    unit_minor: int = 0


@dataclass(frozen=True)
class QuoteFinalized:
    pass


@dataclass(frozen=True)
class QuoteEvent:
    kind: Union[QuoteCreated, LineItemAdded, QuoteFinalized, None] = None


@dataclass(frozen=True)
class StoredEvent:
    seq: int = 0
    quote_id: str = ""
    event: QuoteEvent | None = None


@dataclass(frozen=True)
class AppendCommandRequest:
    client_command_id: str = ""
    quote_id: str = ""
    command: QuoteCommand | None = None


@dataclass(frozen=True)
class AppendCommandsResponse:
    last_committed_seq: int = 0
    committed: tuple[StoredEvent, ...] = ()


@dataclass(frozen=True)
class SubscribeQuoteRequest:
    quote_id: str = ""
    after_seq: int = 0


@dataclass(frozen=True)
class LineItemView:
    line_id: str = ""
    sku: str = ""
    description: str = ""
    quantity: int = 0
    unit_minor: int = 0
    line_total_minor: int = 0


@dataclass(frozen=True)
class QuoteView:
    quote_id: str = ""
    currency_code: str = ""
    jurisdiction_id: str = ""
    finalized: bool = False
    subtotal_minor: int = 0
    tax_minor: int = 0
    total_minor: int = 0
    line_items: tuple[LineItemView, ...] = ()


@dataclass(frozen=True)
class QuoteSnapshot:
    last_seq: int = 0
    view: QuoteView | None = None


@dataclass(frozen=True)
class QuoteTail:
    from_seq_exclusive: int = 0
    to_seq_inclusive: int = 0
    events: tuple[StoredEvent, ...] = ()


_TAGS: dict[type, str] = {
    QuoteCreated: "quote_created",
    LineItemAdded: "line_item_added",
    QuoteFinalized: "quote_finalized",
}
_KINDS_BY_TAG: dict[str, type] = {tag: kind for kind, tag in _TAGS.items()}


def encode_event(event: QuoteEvent) -> bytes:
    """Encode an event into its canonical stored bytes."""
    if not isinstance(event, QuoteEvent):
        raise TypeError(f"expected QuoteEvent, got {type(event).__name__}")
    if event.kind is None:
        document: dict = {"kind": None}
    else:
        tag = _TAGS.get(type(event.kind))
        if tag is None:
            raise TypeError(f"unknown event kind: {type(event.kind).__name__}")
        document = {"kind": tag, "fields": asdict(event.kind)}
    return json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _field_value(tag: str, name: str, expected: type, raw: object) -> object:
    if expected is int:
        valid = isinstance(raw, int) and not isinstance(raw, bool)
    else:
        valid = isinstance(raw, expected)
    if not valid:
        raise CorruptPayload(f"{tag}.{name} has the wrong type")
    return raw


def decode_event(data: bytes) -> QuoteEvent:
    """Decode stored bytes into an event; malformed input raises CorruptPayload."""
    try:
        document = json.loads(data)
    except ValueError as exc:
        raise CorruptPayload(str(exc)) from exc
    if not isinstance(document, dict) or "kind" not in document:
        raise CorruptPayload("event document has no kind")
    tag = document["kind"]
    if tag is None:
        if set(document) != {"kind"}:
            raise CorruptPayload("event without kind carries fields")
        return QuoteEvent()
    kind = _KINDS_BY_TAG.get(tag) if isinstance(tag, str) else None
    if kind is None:
        raise CorruptPayload(f"unknown event kind {tag!r}")
    values = document.get("fields")
    if not isinstance(values, dict) or set(document) != {"kind", "fields"}:
        raise CorruptPayload(f"{tag} has malformed fields")
    expected_fields = {f.name: (str if f.default == "" else int) for f in fields(kind)}
    if set(values) != set(expected_fields):
        raise CorruptPayload(f"{tag} fields do not match")
    arguments = {
        name: _field_value(tag, name, expected, values[name])
        for name, expected in expected_fields.items()
    }
    return QuoteEvent(kind=kind(**arguments))