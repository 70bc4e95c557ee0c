"""Domain name matchers: full, sub-domain, keyword, regexp and a mix of them.

All matchers are case-insensitive and ignore a trailing dot, so
"google.com" and "GOOGLE.com." give the same result.
"""

from __future__ import annotations

import re
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    Iterator,
    NamedTuple,
    Optional,
    Protocol,
    Tuple,
    TypeVar,
)

T = TypeVar("T")

MATCHER_FULL = "full"
MATCHER_DOMAIN = "domain"
MATCHER_REGEXP = "regexp"
MATCHER_KEYWORD = "keyword"

ParseStringFunc = Callable[[str], Tuple[str, Any]]


class Hit(NamedTuple):
    """A successful match and the value stored with the matching pattern."""

    value: Any


class NoDefaultMatcherError(ValueError):
    """Raised when a pattern has no type prefix and no default type is set."""

    def __init__(self) -> None:
        super().__init__("default matcher is not set")


class Matcher(Protocol):
    def match(self, s: str) -> Optional[Hit]:
        """Return a Hit for domain s, or None."""


class WriteableMatcher(Matcher, Protocol):
    def add(self, pattern: str, value: Any) -> None:
        """Add a pattern with its value."""


def trim_dot(s: str) -> str:
    """Remove one trailing '.'."""
    return s[:-1] if s.endswith(".") else s


def normalize_domain(s: str) -> str:
    """Lower-case s and remove its trailing dot: "GOOGLE.com." -> "google.com"."""
    return trim_dot(s).lower()


def reverse_labels(s: str) -> Iterator[str]:
    """Yield the labels of s from the rightmost to the leftmost."""
    first, *rest = trim_dot(s).split(".")
    yield from reversed(rest)
    if first:
        yield first


_NO_VALUE = object()


class _LabelNode:
    __slots__ = ("children", "value")

    def __init__(self) -> None:
        self.children: Dict[str, _LabelNode] = {}
        self.value: Any = _NO_VALUE

    @property
    def has_value(self) -> bool:
        return self.value is not _NO_VALUE

    def count(self) -> int:
        return sum(child.count() + child.has_value for child in self.children.values())


class SubDomainMatcher(Generic[T]):
    """Matches a domain and all of its sub-domains; the longest pattern wins."""

    def __init__(self) -> None:
        self._root = _LabelNode()

    def add(self, pattern: str, value: T) -> None:
        node = self._root
        for label in reverse_labels(normalize_domain(pattern)):
            node = node.children.setdefault(label, _LabelNode())
        node.value = value

    def match(self, s: str) -> Optional[Hit]:
        node = self._root
        found = node.value
        for label in reverse_labels(normalize_domain(s)):
            child = node.children.get(label)
            if child is None:
                break
            if child.has_value:
                found = child.value
            node = child
        return None if found is _NO_VALUE else Hit(found)

    def __len__(self) -> int:
        return self._root.count()


class FullMatcher(Generic[T]):
    """Matches a domain exactly."""

    def __init__(self) -> None:
        self._domains: Dict[str, T] = {}

    def add(self, pattern: str, value: T) -> None:
        self._domains[normalize_domain(pattern)] = value

    def match(self, s: str) -> Optional[Hit]:
        key = normalize_domain(s)
        if key in self._domains:
            return Hit(self._domains[key])
        return None

    def __len__(self) -> int:
        return len(self._domains)


class KeywordMatcher(Generic[T]):
    """Matches domains that contain a keyword."""

    def __init__(self) -> None:
        self._keywords: Dict[str, T] = {}

    def add(self, pattern: str, value: T) -> None:
        self._keywords[normalize_domain(pattern)] = value

    def match(self, s: str) -> Optional[Hit]:
        s = normalize_domain(s)
        for keyword, value in self._keywords.items():
            if keyword in s:
                return Hit(value)
        return None

    def __len__(self) -> int:
        return len(self._keywords)


class RegexMatcher(Generic[T]):
    """Matches domains with regular expressions.

    Expressions are searched in the lower-case, non-fqdn form of the domain.
    """

    def __init__(self) -> None:
        self._regs: Dict[str, Tuple[re.Pattern[str], T]] = {}

    def add(self, pattern: str, value: T) -> None:
        existing = self._regs.get(pattern)
        if existing is not None:
            self._regs[pattern] = (existing[0], value)
            return
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"invalid regexp {pattern!r}: {exc}") from exc
        self._regs[pattern] = (compiled, value)

    def match(self, s: str) -> Optional[Hit]:
        s = normalize_domain(s)
        for compiled, value in self._regs.values():
            if compiled.search(s):
                return Hit(value)
        return None

    def __len__(self) -> int:
        return len(self._regs)


class MixMatcher(Generic[T]):
    """Dispatches "type:pattern" rules to full, domain, regexp and keyword matchers."""

    def __init__(self) -> None:
        self.default_matcher = ""
        self._full: FullMatcher[T] = FullMatcher()
        self._domain: SubDomainMatcher[T] = SubDomainMatcher()
        self._regex: RegexMatcher[T] = RegexMatcher()
        self._keyword: KeywordMatcher[T] = KeywordMatcher()

    def set_default_matcher(self, name: str) -> None:
        """Set the type used for patterns that carry no type prefix."""
        self.default_matcher = name

    def get_sub_matcher(self, typ: str) -> Optional[Any]:
        """Return the sub matcher for typ, or None if typ is unknown."""
        return {
            MATCHER_FULL: self._full,
            MATCHER_DOMAIN: self._domain,
            MATCHER_REGEXP: self._regex,
            MATCHER_KEYWORD: self._keyword,
        }.get(typ)

    def add(self, pattern: str, value: T) -> None:
        typ, sep, rest = pattern.partition(":")
        if not sep:
            typ, rest = "", pattern
        if not typ:
            if not self.default_matcher:
                raise NoDefaultMatcherError()
            typ = self.default_matcher
        sub = self.get_sub_matcher(typ)
        if sub is None:
            raise ValueError(f"unsupported match type [{typ}]")
        sub.add(rest, value)

    def match(self, s: str) -> Optional[Hit]:
        for sub in (self._full, self._domain, self._regex, self._keyword):
            hit = sub.match(s)
            if hit is not None:
                return hit
        return None

    def __len__(self) -> int:
        return len(self._full) + len(self._domain) + len(self._regex) + len(self._keyword)


def pattern_only(s: str) -> Tuple[str, None]:
    """Accept a rule made of a single pattern with no whitespace."""
    if any(ch.isspace() for ch in s):
        raise ValueError("rule string has more than one section")
    return s, None


def load(matcher: Any, s: str, parse: Optional[ParseStringFunc] = None) -> None:
    """Parse one rule string and add it to matcher."""
    pattern, value = (parse or pattern_only)(s)
    matcher.add(pattern, value)


def load_from_text_reader(
    matcher: Any, reader: Iterable[str], parse: Optional[ParseStringFunc] = None
) -> None:
    """Load rules line by line, skipping blanks and '#' comments."""
    for line_no, line in enumerate(reader, 1):
        s = line.split("#", 1)[0].strip()
        if not s:
            continue
        try:
            load(matcher, s, parse)
        except ValueError as exc:
            raise ValueError(f"line {line_no}: {exc}") from exc


def new_domain_mix_matcher() -> MixMatcher[None]:
    """Return a MixMatcher whose default type is "domain"."""
    matcher: MixMatcher[None] = MixMatcher()
    matcher.set_default_matcher(MATCHER_DOMAIN)
    return matcher