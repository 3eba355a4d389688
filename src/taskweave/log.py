"""Logging adapters with colored console output via Rich.

Call sites depend only on the :class:`Logger` protocol.  Which transport is
used (console, MCP-style sink, nothing) is decided once by the caller and
passed down explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from rich.console import Console
from rich.markup import escape

LEVELS = ("debug", "info", "warn", "error", "success")


class Logger(Protocol):
    def info(self, msg: str) -> None: ...

    def warn(self, msg: str) -> None: ...

    def error(self, msg: str) -> None: ...

    def debug(self, msg: str) -> None: ...

    def success(self, msg: str) -> None: ...


@dataclass(frozen=True)
class LogConfig:
    """How chatty a logger should be.

    ``silent`` suppresses everything except errors; ``verbose`` enables debug.
    """

    verbose: bool = False
    silent: bool = False

    @classmethod
    def from_level(cls, level: str) -> LogConfig:
        match level.strip().lower():
            case "debug":
                return cls(verbose=True)
            case "silent" | "error":
                return cls(silent=True)
            case _:
                return cls()


class ConsoleLogger:
    """Rich console logger used by the CLI."""

    def __init__(
        self,
        config: LogConfig | None = None,
        *,
        console: Console | None = None,
        err_console: Console | None = None,
    ) -> None:
        self.config = config or LogConfig()
        self._console = console or Console(highlight=False)
        self._err_console = err_console or Console(highlight=False, stderr=True)

    def info(self, msg: str) -> None:
        if not self.config.silent:
            self._console.print(f"[blue]\\[INFO][/blue] {escape(msg)}")

    def success(self, msg: str) -> None:
        if not self.config.silent:
            self._console.print(f"[green]\\[OK][/green] {escape(msg)}")

    def warn(self, msg: str) -> None:
        if not self.config.silent:
            self._console.print(f"[yellow]\\[WARN][/yellow] {escape(msg)}")

    def error(self, msg: str) -> None:
        self._err_console.print(f"[red]\\[ERROR][/red] {escape(msg)}")

    def debug(self, msg: str) -> None:
        if self.config.verbose and not self.config.silent:
            self._console.print(f"[dim]\\[DEBUG] {escape(msg)}[/dim]")


class CallbackLogger:
    """Forward messages to an MCP-style sink object.

    The sink only needs some of ``info/warn/error/debug/success``; missing
    levels are routed to ``info``.  ``success`` is reported as info on sinks
    that do not know it.
    """

    def __init__(self, sink: Any, config: LogConfig | None = None) -> None:
        self._sink = sink
        self.config = config or LogConfig()

    def _emit(self, level: str, msg: str) -> None:
        if self.config.silent and level != "error":
            return
        if level == "debug" and not self.config.verbose:
            return
        fn = getattr(self._sink, level, None)
        if not callable(fn):
            fn = getattr(self._sink, "info")
        fn(msg)

    def info(self, msg: str) -> None:
        self._emit("info", msg)

    def warn(self, msg: str) -> None:
        self._emit("warn", msg)

    def error(self, msg: str) -> None:
        self._emit("error", msg)

    def debug(self, msg: str) -> None:
        self._emit("debug", msg)

    def success(self, msg: str) -> None:
        self._emit("success", msg)


class NullLogger:
    def info(self, msg: str) -> None:
        pass

    def warn(self, msg: str) -> None:
        pass

    def error(self, msg: str) -> None:
        pass

    def debug(self, msg: str) -> None:
        pass

    def success(self, msg: str) -> None:
        pass


class RecordingLogger:
    """Keep ``(level, message)`` pairs in memory.  Handy for MCP replies and tests."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str]] = []

    def info(self, msg: str) -> None:
        self.records.append(("info", msg))

    def warn(self, msg: str) -> None:
        self.records.append(("warn", msg))

    def error(self, msg: str) -> None:
        self.records.append(("error", msg))

    def debug(self, msg: str) -> None:
        self.records.append(("debug", msg))

    def success(self, msg: str) -> None:
        self.records.append(("success", msg))

    def messages(self, level: str) -> list[str]:
        return [m for lvl, m in self.records if lvl == level]


def make_logger(sink: Any = None, config: LogConfig | None = None) -> Logger:
    """Pick the adapter for *sink*: console when None, callback otherwise."""
    if sink is None:
        return ConsoleLogger(config)
    return CallbackLogger(sink, config)
