"""The per-query context passed through plugins."""

from __future__ import annotations

import copy as _copy
import dataclasses
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import dns.flags
import dns.message
import dns.rrset

EDNS0_SIZE = 1200
_UINT32_MAX = 0xFFFFFFFF


@dataclass
class Opt:
    """An EDNS0 OPT record: UDP payload size, the flags field and options."""

    udp_size: int = EDNS0_SIZE
    ednsflags: int = 0
    options: List[Any] = field(default_factory=list)

    @property
    def do(self) -> bool:
        """Whether the DNSSEC OK bit is set."""
        return bool(self.ednsflags & dns.flags.DO)


def _new_opt() -> Opt:
    return Opt(udp_size=EDNS0_SIZE)


def _opt_of(msg: dns.message.Message) -> Optional[Opt]:
    if msg.edns < 0:
        return None
    return Opt(udp_size=msg.payload, ednsflags=msg.ednsflags, options=list(msg.options))


def _swap_opt(msg: dns.message.Message) -> Optional[Opt]:
    old = _opt_of(msg)
    msg.use_edns(0, 0, EDNS0_SIZE, options=[])
    return old


def _pop_opt(msg: dns.message.Message) -> Optional[Opt]:
    opt = _opt_of(msg)
    if opt is not None:
        msg.use_edns(False)
    return opt


def _copy_opt(opt: Optional[Opt]) -> Optional[Opt]:
    if opt is None:
        return None
    return dataclasses.replace(opt, options=list(opt.options))


_context_ids = itertools.count(1)
_context_lock = threading.Lock()
_key_ids = itertools.count(1)
_key_lock = threading.Lock()


def _next_context_id() -> int:
    with _context_lock:
        return next(_context_ids) & _UINT32_MAX


def reg_key() -> int:
    """Return a new unique key for ``store_value``; call during initialization."""
    with _key_lock:
        i = next(_key_ids)
    if i > _UINT32_MAX:
        raise OverflowError("key id overflowed")
    return i


class Context:
    """A query and its response as they pass through plugins.

    The context takes ownership of the query. The query always carries an
    EDNS0 OPT of its own; the client's one is kept apart in ``client_opt``.
    Not safe for concurrent use.
    """

    def __init__(self, query: dns.message.Message) -> None:
        if not query.question:
            raise ValueError("query must have a question")
        self._id = _next_context_id()
        self._start_time = time.time()
        self.server_meta: Any = None
        self._query = query
        self._client_opt = _swap_opt(query)
        self._resp: Optional[dns.message.Message] = None
        self._resp_opt: Optional[Opt] = None
        self._upstream_opt: Optional[Opt] = None
        self._kv: Dict[int, Any] = {}
        self._marks: set = set()
        if self._client_opt is not None:
            self._resp_opt = _new_opt()
            # RFC 3225 3: the DO bit of the query must be copied in the response.
            if self._client_opt.do:
                self._resp_opt.ednsflags |= dns.flags.DO

    @property
    def id(self) -> int:
        """A unique, growing id of this context (not the DNS message id)."""
        return self._id

    @property
    def start_time(self) -> float:
        """When the context was created, as a Unix timestamp."""
        return self._start_time

    @property
    def q(self) -> dns.message.Message:
        """The query that will be forwarded upstream."""
        return self._query

    @property
    def q_question(self) -> dns.rrset.RRset:
        """The query question."""
        return self._query.question[0]

    @property
    def q_opt(self) -> Opt:
        """A snapshot of the query's OPT record."""
        opt = _opt_of(self._query)
        if opt is None:
            raise RuntimeError("query opt is missing")
        return opt

    @property
    def client_opt(self) -> Optional[Opt]:
        """The OPT sent by the client, or None."""
        return self._client_opt

    def set_response(self, msg: Optional[dns.message.Message]) -> None:
        """Set msg as the response, taking its OPT apart; None removes the response."""
        self._resp = msg
        self._upstream_opt = None if msg is None else _pop_opt(msg)

    @property
    def r(self) -> Optional[dns.message.Message]:
        """The response for the client, without EDNS0; may be None."""
        return self._resp

    @property
    def resp_opt(self) -> Optional[Opt]:
        """The OPT for the client; None if the client sent none."""
        return self._resp_opt

    @property
    def upstream_opt(self) -> Optional[Opt]:
        """The OPT received from upstream, or None."""
        return self._upstream_opt

    def copy(self) -> "Context":
        """Return a deep copy; stored values themselves are shared."""
        new = Context.__new__(Context)
        new._id = self._id
        new._start_time = self._start_time
        new.server_meta = self.server_meta
        new._query = _copy.deepcopy(self._query)
        new._client_opt = self._client_opt
        new._resp = None if self._resp is None else _copy.deepcopy(self._resp)
        new._resp_opt = _copy_opt(self._resp_opt)
        new._upstream_opt = self._upstream_opt
        new._kv = dict(self._kv)
        new._marks = set(self._marks)
        return new

    def store_value(self, key: int, value: Any) -> None:
        """Store value under a key obtained from ``reg_key``."""
        self._kv[key] = value

    def get_value(self, key: int, default: Any = None) -> Any:
        """Return the value stored under key, or default."""
        return self._kv.get(key, default)

    def delete_value(self, key: int) -> None:
        self._kv.pop(key, None)

    def set_mark(self, mark: int) -> None:
        self._marks.add(mark)

    def has_mark(self, mark: int) -> bool:
        return mark in self._marks

    def delete_mark(self, mark: int) -> None:
        self._marks.discard(mark)

    def summary(self) -> Dict[str, Any]:
        """A brief description of this context for logs."""
        info: Dict[str, Any] = {"uqid": self._id}
        client = getattr(self.server_meta, "client_addr", None)
        if client:
            info["client"] = str(client)
        question = self._query.question[0]
        info["qname"] = question.name.to_text()
        info["qtype"] = int(question.rdtype)
        info["qclass"] = int(question.rdclass)
        if self._resp is not None:
            info["rcode"] = self._resp.rcode()
        info["elapsed"] = time.time() - self._start_time
        return info