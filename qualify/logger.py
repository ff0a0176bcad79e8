"""
Process logging for the qualify server.

Records go either to stderr or to a file and are filtered with the
env_logger directive syntax:

    info                    INFO and above everywhere
    qualify.oracle=debug    DEBUG for that module tree only
    warn,qualify=trace      WARN everywhere, everything under `qualify`

Each record is one line: `[LEVEL module] message`.
"""

import logging
import sys
from typing import List, Optional, Tuple

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

OFF = logging.CRITICAL + 10

_LEVELS = {
    "off": OFF,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_LEVEL_NAMES = {
    TRACE: "TRACE",
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


def parse_filter(spec: Optional[str]) -> Tuple[int, List[Tuple[str, int]]]:
    """Split a directive string into (default level, [(module, level), ...]).

    Without any directive every level passes.  With module directives but
    no bare level, modules not named are silenced.
    """
    if not spec or not spec.strip():
        return TRACE, []

    default = None
    directives: List[Tuple[str, int]] = []
    for part in spec.split("/", 1)[0].split(","):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            name, _, level_text = part.partition("=")
            level = _LEVELS.get(level_text.strip().lower())
            if level is None:
                print(f"warning: invalid logging level '{level_text}', ignoring directive '{part}'",
                      file=sys.stderr)
                continue
            directives.append((name.strip().replace("::", "."), level))
        elif part.lower() in _LEVELS:
            default = _LEVELS[part.lower()]
        else:
            directives.append((part.replace("::", "."), TRACE))

    # Longest module names match first
    directives.sort(key=lambda d: len(d[0]), reverse=True)
    return (default if default is not None else OFF), directives


class DirectiveFilter(logging.Filter):
    def __init__(self, spec: Optional[str] = None):
        super().__init__()
        self.default_level, self.directives = parse_filter(spec)

    def level_for(self, module: str) -> int:
        for name, level in self.directives:
            if module == name or module.startswith(name + "."):
                return level
        return self.default_level

    @property
    def min_level(self) -> int:
        return min([self.default_level] + [level for _, level in self.directives])

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.level_for(record.name)


class LineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        level = _LEVEL_NAMES.get(record.levelno, record.levelname)
        return f"[{level} {record.name}] {record.getMessage()}"


class LineHandler(logging.StreamHandler):
    """Writes one line per record; failed writes and flushes are dropped."""

    def __init__(self, stream, no_buffering: bool = False):
        super().__init__(stream)
        self.no_buffering = no_buffering

    def emit(self, record: logging.LogRecord):
        try:
            self.stream.write(self.format(record) + self.terminator)
            if self.no_buffering:
                self.stream.flush()
        except (OSError, ValueError):
            pass

    def flush(self):
        self.acquire()
        try:
            if self.stream and hasattr(self.stream, "flush"):
                self.stream.flush()
        except (OSError, ValueError):
            pass
        finally:
            self.release()


def configure_logging(log_file: Optional[str] = None, no_buffering: bool = False,
                      filter: Optional[str] = None) -> logging.Handler:
    """Install the handler on the root logger, replacing earlier ones."""
    stream = open(log_file, "a", encoding="utf-8") if log_file else sys.stderr
    handler = LineHandler(stream, no_buffering=no_buffering)
    directive_filter = DirectiveFilter(filter)
    handler.addFilter(directive_filter)
    handler.setFormatter(LineFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, LineHandler):
            root.removeHandler(existing)
            existing.close()
            if existing.stream not in (sys.stderr, sys.stdout):
                existing.stream.close()
    root.addHandler(handler)
    root.setLevel(min(directive_filter.min_level, logging.CRITICAL))
    return handler
