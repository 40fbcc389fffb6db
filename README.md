# tinyreactor

Small building blocks for single-threaded, reactor-style network programs. The package
has no dependencies beyond the standard library.

## Modules

### `tinyreactor.timestamp`

`Timestamp` is an immutable, ordered point in time. It counts microseconds since the
Unix epoch in its `micros` field. Durations are plain `int` microsecond counts.

- `Timestamp.now()` returns the current system time.
- `Timestamp.invalid()` returns the zero timestamp. `is_valid()` is true only for
  timestamps after the epoch.
- `Timestamp.seconds_to_duration(1.5)` returns `1500000`. Values are rounded half away
  from zero.
- Arithmetic:
  - `ts + duration` and `ts - duration` give a new timestamp.
  - `ts1 - ts2` gives the duration between them in microseconds.
- `duration_from_now()` returns the number of seconds from now until the timestamp, as
  a float. It never returns less than 100 microseconds.
- `to_formatted_string(show_microseconds=True, use_utc=False)` renders
  `YYYYMMDD HH:MM:SS.ffffff` in local time or in UTC. `str(ts)` gives the same text
  with the defaults.

### `tinyreactor.timer`

`Timer` holds a callback, an `expiration` timestamp and an `interval` in microseconds.
An interval of `0` means the timer fires once.

`TimerManager` keeps pending timers ordered by expiration. Timers with the same
expiration fire in the order they were created.

- `add_timer(callback, when, interval=0)` schedules a timer and returns it. A negative
  interval raises `ValueError`.
- `remove_timer(timer)` cancels a timer. A repeating timer can cancel itself from inside
  its own callback, and then it is not re-armed.
- `next_expiration()` returns the earliest pending expiration, or `None` when nothing is
  pending. Use it to decide how long your poller may wait.
- `handle_expired(now=None)` does three things:
  - runs every timer that is due at or before `now`,
  - re-arms the repeating timers at `now + interval`,
  - returns the timers that fired.
- `len(manager)` is the number of pending timers.

The manager is not thread-safe. Call it only from the thread that owns it.

### `tinyreactor.timing_wheel`

`TimingWheel(idle_seconds, callback, timers=None)` expires entries `idle_seconds` ticks
after they were inserted or last updated. It has one bucket per tick.

- `insert(data)` returns an `Entry`. The entry has the fields `data` and `bucket`, and a
  `pending` property.
- `update(entry)` moves a pending entry into the newest bucket.
- `remove(entry)` drops a pending entry without calling the callback.
- `on_timer()` advances the wheel by one tick. It calls `callback(data)` for every entry
  in the oldest bucket.
- `bucket_sizes()` returns the number of entries in each bucket. `len(wheel)` is the
  total.

If you pass a `TimerManager` as `timers`, the wheel registers a one-second repeating
timer (`base_timer`) that calls `on_timer`. Otherwise you call `on_timer()` yourself. An
`idle_seconds` value below 1 raises `ValueError`.

### `tinyreactor.tcp_connection`

`TcpConnection(name, sock, local_addr=None, peer_addr=None, defer=None)` wraps an
already connected socket and switches it to non-blocking mode. Its lifecycle is tracked
by `ConnectionState`:

- `CONNECTING`
- `CONNECTED`
- `DISCONNECTING`
- `DISCONNECTED`

You can read the state with `connected()`, `disconnected()` and `state_string()`.

Set these callbacks as attributes:

- `connection_callback(conn)` is called when the connection goes up or down.
- `message_callback(conn, input_buffer, receive_time)` is called with the accumulated
  input `bytearray`.
- `write_complete_callback(conn)` is called when all output has been written. It may be
  left as `None`.
- `close_callback(conn)` notifies the owner that the connection has closed.

Lifecycle:

- `connection_established()` marks the connection as connected and notifies the user.
  Calling it in any state other than `CONNECTING` raises `RuntimeError`.
- `connection_destroyed()` tears the connection down and closes the socket.

Sending:

- `send(data)` accepts `str` (encoded as UTF-8) or bytes-like data.
- `send_vectors(buffers)` uses a single gathered `sendmsg` call where possible.
- Both write directly when nothing is queued. Whatever the socket does not take goes
  into the output buffer, which you can inspect with `pending_output()`.
- Both do nothing unless the connection is connected.

Closing:

- `shutdown()` half-closes the write side once the output buffer is empty.
- `force_close()` closes the connection without waiting for the output buffer.

Event handling is up to the caller. Poll the socket, then call `handle_read()`,
`handle_write()`, `handle_close()` or `handle_error()`:

- `reading` and `is_writing()` say which events the connection wants.
- `handle_error()` logs the socket's pending error and returns its errno.

The `defer` argument receives work that should run after the current event has been
handled: write-complete notifications and forced closes. Without it, that work runs
immediately.

## What the package does not do

There is no event loop, poller, listening socket, acceptor, server or thread pool in
this package, and no HTTP handling. Your program does the following itself:

- accepts connections,
- polls the sockets and dispatches events to `TcpConnection`,
- sleeps until `TimerManager.next_expiration()` and calls `handle_expired()`.

## Example

```python
from tinyreactor.timestamp import Timestamp
from tinyreactor.timer import TimerManager

timers = TimerManager()
ticks = []
timers.add_timer(lambda: ticks.append("tick"),
                 Timestamp.now(),
                 Timestamp.seconds_to_duration(2))

timers.handle_expired(Timestamp.now())
print(ticks)          # ['tick']
print(len(timers))    # 1, the repeating timer is re-armed
```

## Tests

```
pip install -e .[test]
pytest
```