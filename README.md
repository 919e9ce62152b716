# maco

`maco` is a library for a small master/minion remote-execution system. A
master keeps a registry of minions and their public keys and decides which
minions are trusted. It then sends calls to the trusted minions and collects
their answers into a report. A minion runs each call as a shell command.

## Modules

| Module | Contents |
| --- | --- |
| `maco.errors` | `Code`, `GrpcCode`, `MacoError`, `StatusError`, code mapping, `new_*`, `parse`, `is_*` |
| `maco.types` | `MinionState`, `ResultType`, `EventType`, `Minion`, `MinionKey`, `Selector`, `CallRequest`, `CallResponse`, `ReportItem`, `ReportSummary`, `Report` |
| `maco.retry` | `retry_interval`, `is_unavailable` |
| `maco.client_config` | `ClientConfig`, `from_path` |
| `maco.master_config` | `MasterConfig`, `from_path` |
| `maco.minion_config` | `MinionConfig`, `from_path` |
| `maco.shell` | `allow_color` |
| `maco.storage` | `Storage`, `RsaPair`, `StorageEvent`, `parse_state`, `walk_minions` |
| `maco.scheduler` | `Scheduler`, `Pipe`, `Task`, `IdAllocator` |
| `maco.execution` | `run_cmd` |
| `maco.service` | `MacoService` |
| `maco.report` | `parse_targets`, `build_call_request`, `format_report` |
| `maco.keyformat` | `split_minions`, `group_keys_by_state`, `render_key_list`, `render_key_details`, `render_action`, `write_output` |

Python 3.11 or later is required. The runtime dependencies are
`cryptography`, `pyyaml` and `tomli-w`. The `test` extra adds `pytest`.

## Errors

Failures are reported as `MacoError`. Each one carries a `Code`, a message (the
name of the code) and a detail. Codes map to and from HTTP and gRPC status
codes. `to_status()` turns an error into a `StatusError`, which is an RPC
status raised as an exception.

```python
from maco import errors

err = errors.new_not_found("minion not found")
err.code.to_http_code()          # 404
errors.is_not_found(err)         # True
errors.parse(ValueError("boom")).code is errors.Code.UNKNOWN   # True
```

`parse` accepts any exception and handles it as follows:

- A `StatusError` is converted.
- A `MacoError` is returned unchanged.
- An exception with a callable `reason` becomes a bad request.
- The JSON form of an error is read back.
- Any other exception becomes `Code.UNKNOWN`.

`retry.retry_interval(attempts)` gives the delay in seconds before a reconnect
attempt:

- 0.1 for the first attempt.
- 10 × attempts for attempts 1 to 5.
- 60 after that.

`retry.is_unavailable(err)` is true in these cases:

- `EOFError`
- cancellation
- a `StatusError` with `GrpcCode.UNAVAILABLE`

## Key registry

`Storage(root)` creates the data directory and its sub-directories. It
generates the master's 2048-bit RSA pair (`master.pem`, `master.pub`) if that
pair is not already there.

Each minion has its own directory under `minions/`. That directory holds the
minion's details, its public key and its state. A symlink in one of the
following state directories records the minion's state:

- `minions_pre`
- `minions_accept`
- `minions_autosign`
- `minions_denied`
- `minions_rejected`

```python
from maco.storage import Storage
from maco.types import Minion, MinionState

storage = Storage("/tmp/maco-data")
storage.add_minion(Minion(name="web-01"), b"<minion public key PEM>", False, False)
storage.get_minions(MinionState.UNACCEPTED)      # ['web-01']

storage.accept_minion("web-01", include_rejected=False, include_denied=False)
storage.get_minion("web-01").state               # 'accepted'
```

`accept_minion`, `reject_minion` and `delete_minion` raise a `MacoError` with
`Code.NOT_FOUND` when the minion is not in one of the eligible states. The
eligible states are unaccepted, plus any states added by the `include_*`
flags. `subscribe()` returns a queue of `StorageEvent`s and a function that
ends the subscription.

`MacoService(storage, scheduler)` wraps the registry and scheduler with the
checks the master applies to requests. These methods are available:

- `list_minions`
- `get_minion`
- `accept_minion`
- `reject_minion`
- `delete_minion`
- `print_minion`
- `call`

If no minion names are given and the "all" flag is not set, these methods
raise a `StatusError`.

## Calls

`Scheduler(storage)` keeps track of which minions are accepted and which are
connected. `add_stream(minion, public_key, stream)` registers a connection
and returns a `Pipe`. The stream can be any object with `send(dict)` and
`recv() -> dict`. `Pipe.run()` reads the minion's encrypted replies until
`recv` raises `EOFError` or the pipe is stopped.

`Scheduler.run(stop_event)` routes those replies to waiting calls and applies
registry changes. `Scheduler.handle(request)` works in three steps:

1. It encrypts the request with each target minion's public key.
2. It sends the request to each accepted, connected target.
3. It waits up to `request.timeout` seconds and returns a `Report`.

Targets that are not accepted or not online appear in the report with an
error. `handle` raises `TimeoutError` if not all answers arrive in time.

On a minion, `execution.run_cmd(request)` runs the request's function and
arguments through `/bin/bash -c`. It captures combined output and the exit
code. A timeout of 0 means 10 seconds.

```python
from maco.execution import run_cmd
from maco.report import build_call_request, format_report
from maco.types import Report, ReportItem

request = build_call_request(["'web-01,web-02'", "echo", "hello"])
request.selector.minions                         # ['web-01', 'web-02']
run_cmd(request).result                          # b'hello'

print(format_report(Report(items=[ReportItem(minion="web-01", result=True, data=b"hello")])))
```

## Key listings

`maco.keyformat` renders key listings and the results of key actions as
`json`, `yaml` or plain text. Text output is optionally coloured with ANSI
codes; `shell.allow_color()` reports whether the login shell is bash or zsh.
`write_output` writes to a file, truncating it or appending to it, or to
standard output.

```python
from maco import keyformat

text = keyformat.render_action("accept", ["web-01"], "text", color=False)
keyformat.write_output(text, None, append=False)
```

## Configuration files

`ClientConfig`, `MasterConfig` and `MinionConfig` are loaded with each
module's `from_path` and written with `save`. The file extension selects the
format: `.toml`, `.yaml`, `.yml` or `.json`. Any other extension raises
`ValueError`.

Client timeouts are held in seconds. They are written as duration strings
such as `"10s"` in TOML and as nanoseconds in JSON and YAML.

`init()` fills in defaults, and only its first call has any effect:

- `ClientConfig` requires a target.
- `MasterConfig` and `MinionConfig` create the data directory, defaulting to
  `~/.maco`.

```python
from maco import master_config

cfg = master_config.MasterConfig(data_root="/tmp/maco-data")
cfg.save("master.toml")
loaded = master_config.from_path("master.toml")
loaded.init()
```

## What this package does not do

- It has no network layer. There is no RPC or HTTP server for the master and
  no client that connects to one. Streams given to the scheduler must be
  supplied by the caller.
- It has no long-running minion agent that connects to a master and
  reconnects when the connection drops.
- It installs no command-line programs. Key management and call reporting are
  available only as the library functions above.