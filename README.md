# srpclite

A small remote procedure call framework. A server exposes the public methods
of ordinary Python objects as services; clients call them over TCP or Unix
sockets, or through an HTTP `CONNECT` tunnel. Many calls share one
connection and are matched to their responses by sequence number. Calls can
be synchronous or asynchronous, with a connect timeout on the client side
and an optional handle timeout enforced by the server.

## Installation

```
pip install .
```

There are no runtime dependencies. Tests use pytest (`pip install .[test]`).

## Exposing a service

A service is any object whose class name starts with an upper-case letter.
A method is published as `ClassName.Method` when its name starts with an
upper-case letter and it takes exactly one positional argument besides
`self` (no `*args`, `**kwargs` or keyword-only parameters). Its return
value is the reply; an exception it raises is sent back to the caller as
an error message.

```python
import socket
import threading
from dataclasses import dataclass

from srpclite.server import Server

@dataclass
class Args:
    num1: int
    num2: int

class Foo:
    def Sum(self, args):
        return args.num1 + args.num2

server = Server()
server.register(Foo())          # ValueError if "Foo" is already registered

listener = socket.create_server(("127.0.0.1", 0))
threading.Thread(target=server.accept, args=(listener,), daemon=True).start()
host, port = listener.getsockname()
```

The module-level `srpclite.server.register` and `srpclite.server.accept`
use a shared default server (`DEFAULT_SERVER`).

`Server.accept_http` serves HTTP connections instead: a `CONNECT` to
`/_srpc_` switches the connection to the RPC protocol, a `GET` of
`/debug/srpc` returns the page built by `Server.debug_page`, an HTML
overview of the registered services, their methods and how often each has
been called.

## Calling it

```python
from srpclite.client import dial

client = dial("tcp", f"{host}:{port}")
print(client.call("Foo.Sum", Args(1, 3)))            # 4

pending = client.go("Foo.Sum", Args(2, 5))           # asynchronous
print(pending.wait(timeout=5))                       # 7

client.close()
```

`Client.call` accepts a `timeout` in seconds and raises `TimeoutError` if
no reply arrives in time. `Client.go` returns a `Call` at once; pass a
`queue.Queue` as `done` to have finished calls put on it.

`xdial` takes addresses of the form `protocol@address`, for example
`tcp@127.0.0.1:9999`, `unix@/tmp/srpc.sock` or `http@127.0.0.1:9999`
(the last tunnels through `CONNECT`). `dial_http` does the same for a
network and address given separately.

An `Option` (from `srpclite.server`) sets the codec type, the connect
timeout (default 10 seconds) and the handle timeout the server applies to
each request (default 0, no limit). Timeouts are in seconds.

Errors reported by the server arrive as `RPCError`. Calls on a closed or
failed client raise `ShutdownError`, as does closing a client twice.

## Discovery and load balancing

```python
from srpclite.discovery import MultiServersDiscovery, SelectMode
from srpclite.xclient import XClient

discovery = MultiServersDiscovery([f"tcp@{host}:{port}"])
with XClient(discovery, SelectMode.ROUND_ROBIN) as xc:
    print(xc.call("Foo.Sum", Args(3, 4)))
    print(xc.broadcast("Foo.Sum", Args(3, 4)))
```

`SelectMode.RANDOM` picks a server at random, `SelectMode.ROUND_ROBIN`
cycles through them from a random starting point. `update` replaces the
server list. `XClient` keeps one connection per address and reconnects
when a cached connection has gone away. `broadcast` sends the call to
every known server, raises the first error it receives, and otherwise
returns the first reply once every server has answered (`None` when there
are no servers).

## Demo

```
srpclite-demo
```

starts two local servers and runs a series of balanced calls and
broadcasts against them, logging each result; some broadcasts of
`Foo.Sleep` are expected to time out.

## Limitations

- Bodies are encoded with pickle, the only registered codec.
  `CodecType.JSON` is named but selecting it fails with `ValueError`.
  Pickle runs arbitrary code on load, so only connect peers you trust.
- `MultiServersDiscovery` works from an explicit list of addresses; there
  is no registry, and `refresh` does not fetch anything.