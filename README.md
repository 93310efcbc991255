# quoteledger

An append-only ledger for sales quotes.

- Every change to a quote is stored as an event with a per-quote sequence
  number, starting at 1.
- The current state of a quote is always rebuilt by replaying its events.
- Events are kept in SQLite.
- Subscribers get a catch-up tail and a snapshot first. After that they get
  live tails as new events are committed.

The package has no third-party dependencies.

## Modules

### `quoteledger.domain`: the rules of a quote

A quote is created with a currency and a jurisdiction. It then gains line
items and is finally finalized.

- **Commands**: `CreateQuote`, `AddLineItem`, `FinalizeQuote`.
- **Events**: `QuoteCreated`, `LineItemAdded`, `QuoteFinalized`.
- **Functions**:
  - `command_to_events(state, command)` validates a command against a
    `QuoteState` and returns the events it produces.
  - `reduce(state, event)` applies one event and returns the new state.
  - `replay(events)` folds a whole stream, starting from an empty
    `QuoteState`.
- **Money**:
  - `QuoteState.subtotal_minor()`, `tax_minor()` and `total_minor()` work in
    integer minor units.
  - `LineItemState.line_total_minor()` gives the total of one line.
  - Any result outside the signed 64-bit range raises `IntegerOverflow`.
- **Tax**: `tax_rate_bps()` is 800 basis points (8%) for jurisdiction `US`
  and for any `US-*` jurisdiction, and 0 everywhere else. The tax amount is
  rounded toward zero.
- **Errors**: rule violations raise subclasses of `DomainError`:
  - `QuoteAlreadyCreated`
  - `DuplicateCreateQuote`
  - `InvalidField`, whose `field` attribute names the blank field
  - `QuoteNotCreated`
  - `QuoteAlreadyFinalized`
  - `DuplicateLineId`
  - `InvalidQuantity`
  - `InvalidUnitMinor`
  - `IntegerOverflow`
  - `CannotFinalizeWithoutLines`

### `quoteledger.messages`: request, response and event messages

This module holds frozen dataclasses for the messages of the service:

- `QuoteCommand`, `QuoteEvent`, `StoredEvent`
- `AppendCommandRequest`, `AppendCommandsResponse`
- `SubscribeQuoteRequest`
- `QuoteView`, `LineItemView`
- `QuoteSnapshot`, `QuoteTail`

`encode_event` and `decode_event` convert a `QuoteEvent` to and from the
canonical bytes kept in the database, which are compact JSON with sorted
keys. If the bytes are malformed, decoding raises `CorruptPayload`.

### `quoteledger.errors`: error types

- `Status` is an exception that carries a `StatusCode`, such as
  `INVALID_ARGUMENT`, `FAILED_PRECONDITION`, `DEADLINE_EXCEEDED`,
  `RESOURCE_EXHAUSTED` or `UNAUTHENTICATED`, together with a message.
- The store raises subclasses of `StoreError`:
  - `EmptyAppend`
  - `InvalidAfterSeq`
  - `CorruptPayload`
  - `IdempotencyConflict`

### `quoteledger.mapping`: conversions

This module converts between wire messages and domain values, renders a
`QuoteState` as a `QuoteView`, and maps domain, store and `sqlite3` errors
to a `Status`:

| Error | Status code |
| --- | --- |
| Invalid input | `INVALID_ARGUMENT` |
| Rule preconditions and idempotency conflicts | `FAILED_PRECONDITION` |
| Overflow | `OUT_OF_RANGE` |
| Corrupt data | `DATA_LOSS` |
| Database failures | `INTERNAL` |

### `quoteledger.db` and `quoteledger.store`: persistence

- `open_and_migrate(path)` opens a SQLite database and creates the `events`
  and `idempotency_keys` tables. The connection uses WAL mode and a 5-second
  busy timeout.
- `append_command_events(conn, quote_id, client_command_id, events)` writes
  the events of one command in a single `BEGIN IMMEDIATE` transaction.
  - Repeating a command id with identical events returns the events stored
    the first time.
  - Repeating it with different events raises `IdempotencyConflict`.
- `load_stored_events` reads all events of a quote.
- `load_stored_events_between` reads the events in the range
  `(after, upto]`.
- `idempotency_lookup` returns the recorded `(first_seq, last_seq)` of a
  command, or `None`.

### `quoteledger.ledger`: the service

`LedgerService(conn, reliability=None)` offers two asynchronous calls.

- **`append_commands(requests)`** takes a sync or async iterable of
  `AppendCommandRequest` and commits the commands in order. It returns an
  `AppendCommandsResponse`. It raises a `Status`:
  - `DEADLINE_EXCEEDED` when the next request takes longer than
    `ReliabilityLimits.append_idle_timeout` (in seconds, default 10);
  - `RESOURCE_EXHAUSTED` past `append_max_commands` (default 512);
  - `INVALID_ARGUMENT` for an empty stream, a missing command or a change of
    `quote_id` within the stream.
- **`subscribe_quote(request)`** returns an async iterator of updates:
  - first a `QuoteTail` of the events after `request.after_seq`, if there
    are any;
  - then a `QuoteSnapshot` at the current head;
  - then a `QuoteTail` for each later commit.

  An `after_seq` beyond the head is rejected with `INVALID_ARGUMENT`. The
  reads made while following live commits are retried up to 8 times, with
  backoff.

Both calls check identifiers with `validate_identifier`. An identifier must
be non-blank, at most 128 bytes long, free of surrounding spaces, and made
only of ASCII letters, digits, `-`, `_`, `:` and `.`.

`in_flight_appends()` reports how many commands are currently being
committed.

### `quoteledger.auth` and `quoteledger.interceptor`: access control

- `AuthInterceptor` checks an `authorization: Bearer <token>` entry in the
  request metadata and compares tokens in constant time.
  - `AuthInterceptor.required(token)` always requires the given token.
  - `AuthInterceptor.from_env_var(name)` reads the token from an environment
    variable. If the variable is unset, every request is accepted.
- `LedgerGrpcInterceptor(auth, requests_per_second=None, limiter=None)`
  authenticates first and then draws from a process-wide `TokenBucket`.
  - An empty bucket raises `RESOURCE_EXHAUSTED`.
  - Each such refusal is counted in `rate_limited`.

### `quoteledger.config`: configuration

`ServiceConfig.from_env_and_args(environ=None, argv=None)` reads and
validates the settings listed under *Configuration* below. Durations are
given in seconds, and listen addresses are `(host, port)` pairs produced by
`parse_socket_addr`.

## Using the domain model

```python
from quoteledger.domain import (
    AddLineItem,
    CreateQuote,
    FinalizeQuote,
    QuoteState,
    command_to_events,
    reduce,
)

state = QuoteState()
for command in (
    CreateQuote(currency_code="USD", jurisdiction_id="US"),
    AddLineItem(line_id="L1", sku="SKU", description="Widget", quantity=2, unit_minor=5_000),
    FinalizeQuote(),
):
    for event in command_to_events(state, command):
        state = reduce(state, event)

print(state.subtotal_minor(), state.tax_minor(), state.total_minor())
# 10000 800 10800
```

## Using the service

```python
import asyncio

from quoteledger.db import open_and_migrate
from quoteledger.ledger import LedgerService
from quoteledger.messages import (
    AppendCommandRequest,
    CreateQuote,
    QuoteCommand,
    QuoteSnapshot,
    SubscribeQuoteRequest,
)


async def main() -> None:
    service = LedgerService(open_and_migrate("ledger.db"))
    response = await service.append_commands(
        [
            AppendCommandRequest(
                client_command_id="cc-1",
                quote_id="q-1",
                command=QuoteCommand(kind=CreateQuote("USD", "US-CA")),
            )
        ]
    )
    print(response.last_committed_seq)  # 1

    updates = await service.subscribe_quote(SubscribeQuoteRequest(quote_id="q-1"))
    async for update in updates:
        if isinstance(update, QuoteSnapshot):
            print(update.last_seq, update.view.currency_code)  # 1 USD
            break
    await updates.aclose()


asyncio.run(main())
```

## Authentication

```python
from quoteledger.auth import AuthInterceptor

auth = AuthInterceptor.required("token")
auth.intercept({"authorization": "Bearer token"})   # accepted, metadata returned
```

Metadata may be a mapping or an iterable of `(name, value)` pairs.

If a token is configured, the request is rejected with an `UNAUTHENTICATED`
status in any of these cases:

- the `authorization` entry is missing;
- the entry is not ASCII;
- the entry has no space between scheme and token;
- the scheme is not `Bearer` (compared case-insensitively);
- the token does not match.

## Configuration

| Variable | Default | Meaning |
| --- | --- | --- |
| `GRPC_LISTEN_ADDR` | first argument, else `127.0.0.1:50051` | listen address |
| `METRICS_ADDR` | `127.0.0.1:9090` | metrics listen address |
| `QUOTE_LEDGER_DB` | `quote_ledger.db` | SQLite database path |
| `APPEND_IDLE_TIMEOUT_MS` | `10000` | idle timeout per append stream (1–3600000) |
| `APPEND_MAX_COMMANDS` | `512` | maximum commands per append stream (≥ 1) |
| `GRPC_CONCURRENCY_LIMIT` | `128` | concurrency limit (≥ 1) |
| `GRPC_KEEPALIVE_INTERVAL_MS` | `30000` | keepalive interval (≥ 1) |
| `GRPC_KEEPALIVE_TIMEOUT_MS` | `10000` | keepalive timeout; must be below the interval |
| `GRPC_TLS_CERT` / `GRPC_TLS_KEY` | unset | certificate and key paths; set both or neither |
| `GRPC_RATE_LIMIT_RPS` | unset | process-wide request rate limit (≥ 1) |
| `QUOTE_LEDGER_REFLECTION` | `true` | reflection flag |
| `STRICT_CONFIG` | `false` | reject unknown `QUOTE_LEDGER_*`, `APPEND_*` and `GRPC_*` variables |

`QUOTE_LEDGER_AUTH_TOKEN` is accepted under `STRICT_CONFIG`, but
`ServiceConfig` does not store it. To use it, pass its name to
`AuthInterceptor.from_env_var("QUOTE_LEDGER_AUTH_TOKEN")`. When it is set it
must not be blank.

Boolean variables accept the following values, in any case:

- true: `1`, `true`, `yes`, `on`
- false: `0`, `false`, `no`, `off`

```python
from quoteledger.config import ServiceConfig

config = ServiceConfig.from_env_and_args({"APPEND_MAX_COMMANDS": "64"}, [])
print(config.reliability.append_max_commands)   # 64
```

Invalid settings raise `ValueError`, with a message that names the setting.

## What the package does not do

The package provides the ledger, its storage, access checks and
configuration as a library to call from Python.

- It has no network server and no wire protocol.
- It has no metrics endpoint.
- It has no command-line program.

`ServiceConfig` validates the listen addresses, TLS paths, keepalive,
concurrency and reflection settings, but nothing in the package uses them.
The same is true of `TokenBucket` and the interceptors: they must be called
by whatever code receives the requests.