# mosdns

The core of a plugin-driven DNS forwarder. It loads a YAML or JSON
configuration, builds plugins from plugin types registered in code, serves a
small HTTP API, and shuts everything down in order. Alongside it come the
building blocks plugins use: domain and IP matchers, hosts lookup, LRU and
expiring caches, a per-client rate limiter, a query context, and helpers for
DNS messages, TTLs and TCP/UDP wire I/O.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Command line

Start the server with a configuration file:

```
mosdns start -c config.yaml
```

Change the working directory first with `-d`:

```
mosdns start -d /etc/mosdns -c config.yaml
```

Without `-c`, `config.json`, `config.yaml` or `config.yml` is searched for
in the working directory. `--cpu` is accepted but has no effect. The server
runs until SIGINT or SIGTERM.

Print the version and exit:

```
mosdns version
```

## Configuration

```yaml
log:
  level: info          # debug, info, warn, error, dpanic, panic, fatal
  file: ""             # empty means stderr
  production: false    # true writes JSON lines

include:
  - extra_plugins.yaml # its plugins load before this file's own

plugins:
  - tag: my_plugin
    type: some_registered_type
    args:
      key: value

api:
  http: "127.0.0.1:8080"
```

Keys match case-insensitively and unknown keys are errors. Includes are
followed first, up to a depth of 8. Plugin tags must be unique; a plugin
without a tag gets `anonymouse_<type>_<n>`. Plugin `args` are decoded into
the object returned by the type's args factory (a dataclass or a dict).

## Plugins

```python
from mosdns.coremain.plugin import reg_new_plugin_func

def new_plugin(bp, args):
    bp.logger.info("hello from %s", bp.tag)
    return object()

reg_new_plugin_func("my_type", new_plugin, dict)
```

`BP.reg_api(handler)` mounts an `ApiRouter` or a callable
`handler(method, path)` under `/plugins/<tag>` of the HTTP API. Plugins with
a `close()` method are closed on shutdown. `new_test_mosdns(plugins)` gives a
silent `Mosdns` instance for tests.

## Library use

Domain matching with `full:`, `domain:`, `regexp:` and `keyword:` prefixes;
`match` returns a `Hit` holding the stored value, or `None`:

```python
import io
from mosdns.matcher.domain import new_domain_mix_matcher, load_from_text_reader

m = new_domain_mix_matcher()
load_from_text_reader(m, io.StringIO("example.com\nfull:exact.example.org\n"))
m.match("sub.example.com.")   # Hit(value=None)
m.match("other.org")          # None
```

IP lists with sorted, merged prefixes:

```python
import io
from mosdns.matcher.netlist import NetList, load_from_reader

nl = NetList()
load_from_reader(nl, io.StringIO("192.168.0.0/16\n10.0.0.1\n"))
nl.sort()
nl.match("192.168.1.1")       # True
```

Hosts answers for A and AAAA queries:

```python
import io
from mosdns.matcher.domain import MixMatcher, load_from_text_reader
from mosdns.hosts import Hosts, parse_ips

m = MixMatcher()
m.set_default_matcher("domain")
load_from_text_reader(m, io.StringIO("dns.example 192.0.2.1 2001:db8::1\n"), parse_ips)
hosts = Hosts(m)
hosts.lookup("dns.example.")  # ([IPv4Address('192.0.2.1')], [IPv6Address('2001:db8::1')])
```

Other modules: `mosdns.lru`, `mosdns.concurrent_lru`, `mosdns.concurrent_map`,
`mosdns.cache`, `mosdns.linked_list`, `mosdns.rate_limiter`,
`mosdns.query_context`, `mosdns.safe_close`, `mosdns.mlog`,
`mosdns.dnsutils.msg`, `mosdns.dnsutils.net_io` and `mosdns.dnsutils.ptr`.

## What is not included

- No plugin types are registered: no DNS listeners, upstream forwarders or
  caching plugins. A server started from a configuration only runs the
  plugins registered in code.
- The HTTP API serves only what plugins mount; there are no metrics or
  profiling endpoints.
- There is no command for installing or managing a system service.