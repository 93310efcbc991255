"""Conversions between wire messages, domain values and RPC statuses."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable

from quoteledger import domain, messages
from quoteledger.errors import (
    CorruptPayload,
    EmptyAppend,
    IdempotencyConflict,
    InvalidAfterSeq,
    Status,
    StatusCode,
)

_DOMAIN_ERROR_CODES: dict[type, StatusCode] = {
    domain.QuoteAlreadyCreated: StatusCode.FAILED_PRECONDITION,
    domain.DuplicateCreateQuote: StatusCode.FAILED_PRECONDITION,
    domain.InvalidField: StatusCode.INVALID_ARGUMENT,
    domain.InvalidQuantity: StatusCode.INVALID_ARGUMENT,
    domain.InvalidUnitMinor: StatusCode.INVALID_ARGUMENT,
    domain.DuplicateLineId: StatusCode.INVALID_ARGUMENT,
    domain.QuoteNotCreated: StatusCode.FAILED_PRECONDITION,
    domain.QuoteAlreadyFinalized: StatusCode.FAILED_PRECONDITION,
    domain.CannotFinalizeWithoutLines: StatusCode.FAILED_PRECONDITION,
    domain.IntegerOverflow: StatusCode.OUT_OF_RANGE,
}


def proto_command_to_domain(cmd: messages.QuoteCommand) -> domain.DomainCommand:
    """Turn a wire command into a domain command."""
    match cmd.kind:
        case None:
            raise Status(StatusCode.INVALID_ARGUMENT, "command.kind required")
        case messages.CreateQuote(currency_code=currency, jurisdiction_id=jurisdiction):
            return domain.CreateQuote(currency, jurisdiction)
        case messages.AddLineItem() as kind:
            return domain.AddLineItem(
                kind.line_id, kind.sku, kind.description, kind.quantity, kind.unit_minor
            )
        case messages.FinalizeQuote():
            return domain.FinalizeQuote()
        case other:
            raise Status(
                StatusCode.INVALID_ARGUMENT,
                f"unknown command kind {type(other).__name__}",
            )


def domain_event_to_proto(event: domain.DomainEvent) -> messages.QuoteEvent:
    """Turn a domain event into its wire form."""
    match event:
        case domain.QuoteCreated(currency_code=currency, jurisdiction_id=jurisdiction):
            kind = messages.QuoteCreated(currency, jurisdiction)
        case domain.LineItemAdded():
            kind = messages.LineItemAdded(
                event.line_id, event.sku, event.description, event.quantity, event.unit_minor
            )
        case domain.QuoteFinalized():
            kind = messages.QuoteFinalized()
        case _:
            raise TypeError(f"not a domain event: {event!r}")
    return messages.QuoteEvent(kind=kind)


def stored_event_to_domain_event(stored: messages.StoredEvent) -> domain.DomainEvent:
    """Extract the domain event from a stored event, raising CorruptPayload if absent."""
    if stored.event is None:
        raise CorruptPayload("stored event missing payload")
    match stored.event.kind:
        case None:
            raise CorruptPayload("stored event missing kind")
        case messages.QuoteCreated(currency_code=currency, jurisdiction_id=jurisdiction):
            return domain.QuoteCreated(currency, jurisdiction)
        case messages.LineItemAdded() as kind:
            return domain.LineItemAdded(
                kind.line_id, kind.sku, kind.description, kind.quantity, kind.unit_minor
            )
        case messages.QuoteFinalized():
            return domain.QuoteFinalized()
        case other:
            raise CorruptPayload(f"unknown stored event kind {type(other).__name__}")


def replay_stored_to_state(events: Iterable[messages.StoredEvent]) -> domain.QuoteState:
    """Rebuild a quote's state from its stored events."""
    return domain.replay(stored_event_to_domain_event(stored) for stored in events)


def quote_state_to_view(quote_id: str, state: domain.QuoteState) -> messages.QuoteView:
    """Render a quote state, including its money totals, as a view message."""
    subtotal = state.subtotal_minor()
    tax = state.tax_minor()
    total = state.total_minor()
    line_items = tuple(
        messages.LineItemView(
            line_id=line.line_id,
            sku=line.sku,
            description=line.description,
            quantity=line.quantity,
            unit_minor=line.unit_minor,
            line_total_minor=line.line_total_minor(),
        )
        for line in state.lines
    )
    return messages.QuoteView(
        quote_id=quote_id,
        currency_code=state.currency_code or "",
        jurisdiction_id=state.jurisdiction_id or "",
        finalized=state.finalized,
        subtotal_minor=subtotal,
        tax_minor=tax,
        total_minor=total,
        line_items=line_items,
    )


def domain_error_to_status(err: domain.DomainError) -> Status:
    """Map a domain rule violation to an RPC status."""
    code = _DOMAIN_ERROR_CODES.get(type(err), StatusCode.INTERNAL)
    return Status(code, str(err))


def store_error_to_status(err: Exception) -> Status:
    """Map a store, domain or database failure to an RPC status."""
    if isinstance(err, domain.DomainError):
        return domain_error_to_status(err)
    if isinstance(err, (InvalidAfterSeq, EmptyAppend)):
        return Status(StatusCode.INVALID_ARGUMENT, str(err))
    if isinstance(err, CorruptPayload):
        return Status(StatusCode.DATA_LOSS, str(err))
    if isinstance(err, IdempotencyConflict):
        return Status(StatusCode.FAILED_PRECONDITION, str(err))
    if isinstance(err, sqlite3.Error):
        return Status(StatusCode.INTERNAL, str(err))
    return Status(StatusCode.INTERNAL, str(err))