"""Named brew operations: argv, execution mode, caching and exit-status policy."""

import json
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any

from cellar import log, process
from cellar.cache import Cache
from cellar.config import DEFAULT_CACHE_MAX_AGE, Settings
from cellar.errors import BrewError, Cancelled, DecodeFailure

# Cache keys
FORMULAE = "formulae"
CASKS = "casks"
OUTDATED = "outdated"
SERVICES = "services"
TAPS = "taps"

PACKAGE_KEYS = (FORMULAE, CASKS, OUTDATED)


class Mode(Enum):
    BUFFERED = "buffered"
    STREAMING = "streaming"


# ── Decoders ──────────────────────────────────────────────────


def _load_json(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeFailure(f"invalid JSON ({e.msg} at line {e.lineno})") from None


def json_key(key: str) -> Callable[[str], list]:
    """Decoder for --json=v2 documents: return the list under *key*."""

    def decode(text: str) -> list:
        doc = _load_json(text)
        if not isinstance(doc, dict) or not isinstance(doc.get(key), list):
            raise DecodeFailure(f"Missing key '{key}' in brew JSON output")
        return doc[key]

    return decode


def json_first(key: str) -> Callable[[str], dict]:
    """Decoder for `info --json=v2 <name>`: the single record under *key*."""
    items = json_key(key)

    def decode(text: str) -> dict:
        found = items(text)
        if not found:
            raise DecodeFailure(f"No {key} entry in brew info output")
        return found[0]

    return decode


def json_list(text: str) -> list:
    doc = _load_json(text)
    if not isinstance(doc, list):
        raise DecodeFailure(f"expected a JSON array, got {type(doc).__name__}")
    return doc


def json_outdated(text: str) -> list:
    """Formulae followed by casks from `outdated --json=v2`."""
    doc = _load_json(text)
    if not isinstance(doc, dict):
        raise DecodeFailure("Invalid outdated JSON")
    items = []
    for key in ("formulae", "casks"):
        value = doc.get(key, [])
        if not isinstance(value, list):
            raise DecodeFailure(f"Expected a list under '{key}' in brew outdated output")
        items.extend(value)
    return items


def lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.strip()]


def stripped(text: str) -> str:
    return text.strip()


# ── Operations ────────────────────────────────────────────────


@dataclass(frozen=True)
class Operation:
    """One named action against brew.

    ``argv`` entries may hold ``{param}`` placeholders filled by build().
    ``decode`` of None returns raw stdout text. ``allow_nonzero`` marks
    commands that report findings through their exit status. ``invalidates``
    lists cache keys to mark stale once the operation succeeds.
    """

    name: str
    argv: tuple[str, ...]
    mode: Mode = Mode.BUFFERED
    decode: Callable[[str], Any] | None = None
    cache_key: str | None = None
    max_age: float | None = None
    allow_nonzero: bool = False
    include_stderr: bool = False
    invalidates: tuple[str, ...] = ()
    help: str = ""

    def __post_init__(self):
        if self.cache_key and (self.mode is Mode.STREAMING or self.invalidates):
            raise ValueError(f"{self.name}: only buffered read operations can be cached")

    @property
    def mutating(self) -> bool:
        return bool(self.invalidates)

    def build(self, **params) -> list[str]:
        """Fill argv placeholders. Raises KeyError for a missing parameter."""
        return [part.format(**params) for part in self.argv]

    def key_for(self, **params) -> str | None:
        return self.cache_key.format(**params) if self.cache_key else None


def _op(name: str, *argv: str, **kwargs) -> Operation:
    return Operation(name=name, argv=argv, **kwargs)


_STREAM = Mode.STREAMING

OPERATIONS: dict[str, Operation] = {
    op.name: op
    for op in [
        # Packages
        _op("list-formulae", "info", "--json=v2", "--installed", "--formula",
            decode=json_key("formulae"), cache_key=FORMULAE, help="Installed formulae"),
        _op("list-casks", "info", "--json=v2", "--installed", "--cask",
            decode=json_key("casks"), cache_key=CASKS, help="Installed casks"),
        _op("formula-info", "info", "--json=v2", "{name}",
            decode=json_first("formulae"), help="Details for one formula"),
        _op("cask-info", "info", "--cask", "--json=v2", "{name}",
            decode=json_first("casks"), help="Details for one cask"),
        _op("search-formulae", "search", "--formula", "{query}", decode=lines),
        _op("search-casks", "search", "--cask", "{query}", decode=lines),
        _op("outdated", "outdated", "--json=v2",
            decode=json_outdated, cache_key=OUTDATED, help="Packages with newer versions"),
        _op("list-taps", "tap-info", "--json", "--installed",
            decode=json_list, cache_key=TAPS),
        _op("install", "install", "{name}", mode=_STREAM, invalidates=PACKAGE_KEYS),
        _op("install-cask", "install", "--cask", "{name}", mode=_STREAM, invalidates=PACKAGE_KEYS),
        _op("uninstall", "uninstall", "{name}", invalidates=PACKAGE_KEYS + (SERVICES,)),
        _op("upgrade", "upgrade", "{name}", mode=_STREAM, invalidates=PACKAGE_KEYS),
        _op("upgrade-all", "upgrade", mode=_STREAM, invalidates=PACKAGE_KEYS),
        _op("pin", "pin", "{name}", invalidates=(FORMULAE,)),
        _op("unpin", "unpin", "{name}", invalidates=(FORMULAE,)),
        # Cleanup
        _op("cleanup-dry-run", "cleanup", "-n"),
        _op("cleanup", "cleanup", mode=_STREAM),
        _op("cleanup-aggressive", "cleanup", "--prune=all", "-s", mode=_STREAM),
        # Services
        _op("list-services", "services", "list", "--json",
            decode=json_list, cache_key=SERVICES, help="Managed background services"),
        _op("start-service", "services", "start", "{name}", invalidates=(SERVICES,)),
        _op("stop-service", "services", "stop", "{name}", invalidates=(SERVICES,)),
        _op("restart-service", "services", "restart", "{name}", invalidates=(SERVICES,)),
        # Health: these exit non-zero when they find problems
        _op("doctor", "doctor", allow_nonzero=True, include_stderr=True),
        _op("missing", "missing", allow_nonzero=True),
        # Dependencies
        _op("deps", "deps", "--tree", "{name}"),
        _op("deps-installed", "deps", "--installed"),
        _op("uses", "uses", "--installed", "{name}", decode=lines),
        # Brewfile
        _op("bundle-dump", "bundle", "dump", "--file={path}", "--force"),
        _op("bundle-install", "bundle", "install", "--file={path}",
            mode=_STREAM, invalidates=PACKAGE_KEYS + (SERVICES,)),
        _op("bundle-check", "bundle", "check", "--file={path}",
            allow_nonzero=True, include_stderr=True),
        _op("bundle-cleanup", "bundle", "cleanup", "--file={path}", allow_nonzero=True),
        # Environment
        _op("version", "--version", decode=stripped),
        _op("prefix", "--prefix", decode=stripped),
    ]
}


# ── Dispatch ──────────────────────────────────────────────────


class Brew:
    """Runs named operations against one brew binary, consulting the cache for reads."""

    def __init__(
        self,
        brew_path: str,
        cache: Cache | None = None,
        max_age: float = DEFAULT_CACHE_MAX_AGE,
        operations: dict[str, Operation] | None = None,
    ):
        self.brew_path = brew_path
        self.cache = cache
        self.max_age = max_age
        self.operations = OPERATIONS if operations is None else operations

    def operation(self, name: str) -> Operation:
        try:
            return self.operations[name]
        except KeyError:
            raise KeyError(f"unknown brew operation: {name}") from None

    def argv(self, name: str, /, **params) -> list[str]:
        return [self.brew_path] + self.operation(name).build(**params)

    def _max_age(self, op: Operation) -> float:
        return self.max_age if op.max_age is None else op.max_age

    def _cache_key(self, op: Operation, params: dict) -> str | None:
        if self.cache is None:
            return None
        return op.key_for(**params)

    def restore(self, name: str, /, current=None, force_refresh: bool = False, **params):
        """What to show before fetching, and whether a fetch is needed.

        Returns ``(value, needs_fetch)``; see Cache.restore_if_needed.
        """
        op = self.operation(name)
        key = self._cache_key(op, params)
        if key is None:
            return current, True
        return self.cache.restore_if_needed(current, key, self._max_age(op), force_refresh)

    def invalidate(self, op: Operation) -> None:
        if self.cache is None:
            return
        for key in op.invalidates:
            self.cache.expire(key)

    async def perform(
        self,
        name: str,
        /,
        *,
        force_refresh: bool = False,
        stale_ok: bool = True,
        timeout: float | None = None,
        cancel=None,
        **params,
    ):
        """Run a buffered operation and return its decoded value.

        Cached reads return the stored value while it is fresh. If a fetch
        fails and a stale value exists, that value is returned instead when
        *stale_ok* (cancellation always propagates).
        """
        op = self.operation(name)
        if op.mode is not Mode.BUFFERED:
            raise ValueError(f"{name} is a streaming operation; use stream()")

        key = self._cache_key(op, params)
        cached = self.cache.load(key) if key else None
        if cached is not None and not force_refresh and cached.is_fresh(self._max_age(op)):
            log.debug(f"{name}: cache hit ({cached.age():.0f}s old)")
            return cached.data

        try:
            value = await self._execute(op, params, timeout, cancel)
        except Cancelled:
            raise
        except BrewError as e:
            if cached is None or not stale_ok:
                raise
            log.warning(f"{name} failed, showing data from {cached.age():.0f}s ago: {e.message}")
            return cached.data

        if key:
            self.cache.save(key, value)
        self.invalidate(op)
        return value

    async def _execute(self, op: Operation, params: dict, timeout, cancel):
        result = await process.run(
            [self.brew_path] + op.build(**params), timeout=timeout, cancel=cancel
        )
        if not op.allow_nonzero:
            result.check()
        text = result.stdout + result.stderr if op.include_stderr else result.stdout
        return op.decode(text) if op.decode is not None else text

    def stream(
        self, name: str, /, *, timeout: float | None = None, cancel=None, **params
    ) -> AsyncIterator[str]:
        """Relay a streaming operation's output chunks.

        Related cache keys are marked stale once the command exits cleanly.
        Raises ValueError right away for a buffered operation.
        """
        op = self.operation(name)
        if op.mode is not Mode.STREAMING:
            raise ValueError(f"{name} is a buffered operation; use perform()")
        argv = [self.brew_path] + op.build(**params)
        return self._relay(op, argv, timeout, cancel)

    async def _relay(self, op: Operation, argv: list[str], timeout, cancel) -> AsyncIterator[str]:
        async with aclosing(process.run_streaming(argv, timeout=timeout, cancel=cancel)) as chunks:
            async for chunk in chunks:
                yield chunk
        self.invalidate(op)


def from_settings(settings: Settings) -> Brew:
    return Brew(
        settings.brew_path,
        cache=Cache(settings.cache_dir),
        max_age=settings.cache_max_age,
    )
