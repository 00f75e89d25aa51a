# netclient

A library for the host side of a WireGuard mesh network. It keeps the host's
configuration and the list of servers the host is registered with, answers
DNS queries for names on the mesh, and edits the system resolver files so
that queries reach the local DNS listener.

## Modules

- `netclient.lockfile` – PID-stamped lock files. `lock()` and `unlock()` retry
  every 100 ms and raise `LockTimeoutError` after the timeout (5 s by
  default); stale lock files (empty, unreadable, or owned by a dead process)
  are removed. `locked()` is a context manager holding the lock for a block.
- `netclient.config` – the `Config` dataclass for the host (id, name, ports,
  MTU, interface, keys, DNS settings) with `to_dict()`, `from_dict()` and
  `from_yaml()`, and `ConfigStore`, which reads and writes it as
  `netclient.json`. `ConfigStore.update_host()` applies host settings sent by
  a server while keeping fields the server may not change, and returns
  `(reset_interface, restart, send_host_update)`. Also `InitType`,
  `get_netclient_path()`, `get_netclient_install_path()`, `in_char_set()`,
  `is_port_free()` and `check_uid()`.
- `netclient.servers` – the `Server` dataclass and `ServerRegistry`, which keeps
  `servers.json`, records the current server in `.serverctx`, and converts an
  `OldNetmakerServerConfig` with `convert_server_cfg()`.
- `netclient.cache` – `SyncMap`, a thread-safe dictionary, and the shared
  caches `ENDPOINT_CACHE`, `SKIP_ENDPOINT_CACHE`, `SERVER_ADDR_CACHE` and
  `EGRESS_ROUTE_CACHE`.
- `netclient.dnsrecords` – `DNSResolver`, a store of A and AAAA records per
  network. `sync_dns()` replaces one network's records from a list of entries
  holding `name`, `address` and `address6`; `lookup()` finds a record set by
  name and type. `upstream_nameservers()` picks where unknown queries go.
- `netclient.dnsserver` – `DNSServer`, UDP listeners that answer from a
  `DNSResolver` and forward other questions to upstream servers, replying
  NXDOMAIN when none of them answers.
- `netclient.dnsconfig` – `DNSManager` (stub, uplink, resolveconf, file) and
  `DNSConfig`, saved to and read from `dns.json`.
- `netclient.resolvconf` – functions that add and remove the listener's lines
  in `resolv.conf` or systemd's `resolved.conf`, parse a `resolv.conf` or the
  output of `resolvectl status`, and `ResolvConfManager`, which backs up the
  file, applies the change with `setup()` and reverses it with `restore()`.

## Examples

```python
from netclient.config import get_netclient_path, in_char_set

get_netclient_path("linux")    # "/etc/netclient/"
in_char_set("my-host-01")      # True
in_char_set("my_host")         # False
```

```python
from netclient.config import ConfigStore

store = ConfigStore("/tmp/netclient/", "/tmp")
config = store.read()          # creates netclient.json if it is missing
config.mtu = 1420
store.update(config)
store.write()
```

```python
from netclient.dnsrecords import DNSResolver, RecordType

resolver = DNSResolver()
resolver.sync_dns("mesh", [{"name": "host1.mesh", "address": "10.0.0.5"}])
resolver.lookup("host1.mesh.", RecordType.A)   # RRset for 10.0.0.5
```

```python
from netclient.resolvconf import get_ip_from_server_string, nameserver_and_domains

get_ip_from_server_string("[fd00::1]:53")            # "fd00::1"
nameserver_and_domains("10.0.0.5:53", "mesh", "")    # ("nameserver 10.0.0.5", "search mesh .")
```

Most classes take the configuration directory and the lock directory as
arguments, so they can be pointed at a scratch directory.

## What it does not do

This package is a library only. It has no command-line program, does not
authenticate with a server's API, does not create or configure WireGuard
interfaces, does not install, start or stop a background service, and does
not run commands such as `resolvectl` or `systemctl`; callers that need a
restart of the system resolver after `ResolvConfManager.setup()` must arrange
it themselves.

## Requirements

Python 3.10 or later, with PyYAML and dnspython.