"""Pure quote domain: state, events, commands and the reducer.

Sequence numbers are assigned by the store when events are persisted; the
reducer is deterministic and never looks at them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Union

_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1


class DomainError(Exception):
    """A command or event that the quote rules reject."""

    message = "domain error"

    def __init__(self) -> None:
        super().__init__(self.message)

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class QuoteAlreadyCreated(DomainError):
    message = "quote is already initialized"


class DuplicateCreateQuote(DomainError):
    message = "create_quote is invalid because a quote already exists"


class InvalidField(DomainError):
    """A required text field was blank."""

    def __init__(self, field: str) -> None:
        Exception.__init__(self, f"invalid field: {field}")
        self.field = field


class QuoteNotCreated(DomainError):
    message = "quote must be created before this operation"


class QuoteAlreadyFinalized(DomainError):
    message = "quote is finalized and cannot be modified"


class DuplicateLineId(DomainError):
    message = "line_id already exists on this quote"


class InvalidQuantity(DomainError):
    message = "quantity must be positive"


class InvalidUnitMinor(DomainError):
    message = "unit_minor must be non-negative"


class IntegerOverflow(DomainError):
    message = "integer overflow in money math"


class CannotFinalizeWithoutLines(DomainError):
    message = "finalize requires at least one line item"


def _checked_i64(value: int) -> int:
    if not _I64_MIN <= value <= _I64_MAX:
        raise IntegerOverflow()
    return value


def _div_trunc(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // denominator
    return quotient if numerator >= 0 else -quotient


@dataclass(frozen=True)
class LineItemState:
    line_id: str
    sku: str
    description: str
    quantity: int
    unit_minor: int

    def line_total_minor(self) -> int:
        """Quantity times unit price, in minor currency units."""
        return _checked_i64(self.quantity * self.unit_minor)


@dataclass(frozen=True)
class QuoteState:
    """Current state of one quote; ``currency_code`` is None until created."""

    currency_code: str | None = None
    jurisdiction_id: str | None = None
    finalized: bool = False
    lines: tuple[LineItemState, ...] = ()

    def is_created(self) -> bool:
        return self.currency_code is not None

    def subtotal_minor(self) -> int:
        return _checked_i64(sum(line.line_total_minor() for line in self.lines))

    def tax_rate_bps(self) -> int:
        """Tax rate in basis points: 800 for US jurisdictions, otherwise none."""
        jurisdiction = self.jurisdiction_id or ""
        if jurisdiction == "US" or jurisdiction.startswith("US-"):
            return 800
        return 0

    def tax_minor(self) -> int:
        subtotal = self.subtotal_minor()
        return _checked_i64(_div_trunc(subtotal * self.tax_rate_bps(), 10_000))

    def total_minor(self) -> int:
        return _checked_i64(self.subtotal_minor() + self.tax_minor())

    def _has_line(self, line_id: str) -> bool:
        return any(line.line_id == line_id for line in self.lines)


@dataclass(frozen=True)
class QuoteCreated:
    currency_code: str
    jurisdiction_id: str


@dataclass(frozen=True)
class LineItemAdded:
    line_id: str
    sku: str
    description: str
    quantity: int
    unit_minor: int


@dataclass(frozen=True)
class QuoteFinalized:
    pass


@dataclass(frozen=True)
class CreateQuote:
    currency_code: str
    jurisdiction_id: str


@dataclass(frozen=True)
class AddLineItem:
    line_id: str
    sku: str
    description: str
    quantity: int
    unit_minor: int


@dataclass(frozen=True)
class FinalizeQuote:
    pass


DomainEvent = Union[QuoteCreated, LineItemAdded, QuoteFinalized]
DomainCommand = Union[CreateQuote, AddLineItem, FinalizeQuote]


def _require_modifiable(state: QuoteState) -> None:
    if not state.is_created():
        raise QuoteNotCreated()
    if state.finalized:
        raise QuoteAlreadyFinalized()


def _require_non_blank(field: str, value: str) -> None:
    if not value.strip():
        raise InvalidField(field)


def reduce(state: QuoteState, event: DomainEvent) -> QuoteState:
    """Apply one committed event to a state and return the new state."""
    match event:
        case QuoteCreated(currency_code=currency, jurisdiction_id=jurisdiction):
            if state.is_created():
                raise QuoteAlreadyCreated()
            return QuoteState(
                currency_code=currency,
                jurisdiction_id=jurisdiction,
                finalized=state.finalized,
                lines=(),
            )
        case LineItemAdded():
            _require_modifiable(state)
            if state._has_line(event.line_id):
                raise DuplicateLineId()
            line = LineItemState(
                event.line_id, event.sku, event.description, event.quantity, event.unit_minor
            )
            return replace(state, lines=state.lines + (line,))
        case QuoteFinalized():
            _require_modifiable(state)
            return replace(state, finalized=True)
        case _:
            raise TypeError(f"not a domain event: {event!r}")


def command_to_events(state: QuoteState, command: DomainCommand) -> list[DomainEvent]:
    """Validate a command against a state and return the events it produces."""
    match command:
        case CreateQuote(currency_code=currency, jurisdiction_id=jurisdiction):
            if state.is_created():
                raise DuplicateCreateQuote()
            _require_non_blank("currency_code", currency)
            _require_non_blank("jurisdiction_id", jurisdiction)
            return [QuoteCreated(currency, jurisdiction)]
        case AddLineItem():
            _require_modifiable(state)
            _require_non_blank("line_id", command.line_id)
            _require_non_blank("sku", command.sku)
            _require_non_blank("description", command.description)
            if command.quantity <= 0:
                raise InvalidQuantity()
            if command.unit_minor < 0:
                raise InvalidUnitMinor()
            if state._has_line(command.line_id):
                raise DuplicateLineId()
            line = LineItemState(
                command.line_id,
                command.sku,
                command.description,
                command.quantity,
                command.unit_minor,
            )
            line.line_total_minor()
            replace(state, lines=state.lines + (line,)).total_minor()
            return [
                LineItemAdded(
                    command.line_id,
                    command.sku,
                    command.description,
                    command.quantity,
                    command.unit_minor,
                )
            ]
        case FinalizeQuote():
            _require_modifiable(state)
            if not state.lines:
                raise CannotFinalizeWithoutLines()
            return [QuoteFinalized()]
        case _:
            raise TypeError(f"not a domain command: {command!r}")


def replay(events: Iterable[DomainEvent]) -> QuoteState:
    """Fold an event stream, starting from an empty quote."""
    state = QuoteState()
    for event in events:
        state = reduce(state, event)
    return state