"""
Runtime tracing for polymask.

A single process-wide Tracer writes nested, timed spans and events to stderr
and optionally a file. Each record is one text line, followed by a JSON line
when json_output is set:

    12:04:31.207 INFO  color_flood:flood_fill  start
    12:04:31.209 INFO    color_flood:flood_fill  Seed (50, 50) selected 100 pixels ...

Nothing is formatted while the tracer is disabled, so traced engine calls
cost one flag check.
"""

import functools
import hashlib
import json
import sys
import time
from collections import namedtuple
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import IO, Optional

import numpy as np
from pydantic import BaseModel


LEVELS = {"ERROR": 0, "WARN": 1, "INFO": 2, "DEBUG": 3}
DEFAULT_LEVEL = "INFO"

# One open span: what to report against, and when it began
_Frame = namedtuple("_Frame", ["name", "module", "started"])


@dataclass
class TracerConfig:
    enabled: bool = False
    level: str = DEFAULT_LEVEL
    file_path: Optional[str] = None
    json_output: bool = False
    _file_handle: Optional[IO[str]] = field(default=None, repr=False)

    def configure(self, enabled=False, level=DEFAULT_LEVEL, file_path=None, json_output=False):
        """Apply new settings, reopening the trace file if one is requested."""
        self.close()
        self.enabled = enabled
        self.level = level.upper()
        self.file_path = file_path
        self.json_output = json_output

        if enabled and file_path:
            self._file_handle = open(file_path, "w", encoding="utf-8")

    def close(self):
        if self._file_handle is not None:
            self._file_handle.close()
            self._file_handle = None

    def allows(self, level):
        if not self.enabled:
            return False
        threshold = LEVELS.get(self.level, LEVELS[DEFAULT_LEVEL])
        return LEVELS.get(level, LEVELS[DEFAULT_LEVEL]) <= threshold


def _clock():
    now = datetime.now()
    return f"{now:%H:%M:%S}.{now.microsecond // 1000:03d}"


def _elapsed_ms(started):
    return (time.perf_counter() - started) * 1000


def _meta_suffix(meta):
    return " ".join(f"{key}={summarize(value)}" for key, value in meta.items())


def _format_text(record):
    indent = "  " * record["depth"]
    where = record["module"]
    if record["function"]:
        where = f"{where}:{record['function']}"
    return f"{record['timestamp']} {record['level']:<5} {indent}{where}  {record['message']}"


def _format_json(record):
    return json.dumps(record)


class Tracer:
    """
    Span and event logger shared by the whole engine.

    Spans nest: every line written inside a span is indented one step further
    than the span's own start and end lines, and events are attributed to
    the innermost open span.
    """

    def __init__(self):
        self.config = TracerConfig()
        self._stack = []

    @property
    def depth(self):
        return len(self._stack)

    def _emit(self, level, module, function, message, meta=None):
        if not self.config.allows(level):
            return

        record = {
            "timestamp": _clock(),
            "level": level,
            "depth": self.depth,
            "module": module,
            "function": function,
            "message": message,
            "meta": {key: summarize(value) for key, value in (meta or {}).items()},
        }

        lines = [_format_text(record)]
        if self.config.json_output:
            lines.append(_format_json(record))

        handle = self.config._file_handle
        for line in lines:
            print(line, file=sys.stderr)
            if handle is not None:
                handle.write(line + "\n")
        if handle is not None:
            handle.flush()

    @contextmanager
    def span(self, name, module="", **meta):
        """
        Trace the enclosed block as one named step.

        Writes a start line with the summarized meta and an end line with the
        elapsed time. An exception escaping the block is written at ERROR
        and propagates unchanged.
        """
        if not self.config.enabled:
            yield
            return

        self._emit("INFO", module, name, f"start {_meta_suffix(meta)}".strip())
        frame = _Frame(name, module, time.perf_counter())
        self._stack.append(frame)

        try:
            yield
        except Exception as e:
            self._stack.pop()
            detail = f"{type(e).__name__}: {str(e)[:100]}"
            self._emit("ERROR", module, name, f"failed dt={_elapsed_ms(frame.started):.0f}ms error={detail}")
            raise
        else:
            self._stack.pop()
            self._emit("INFO", module, name, f"end ok dt={_elapsed_ms(frame.started):.0f}ms")

    def event(self, message, level="INFO", **meta):
        """Write a single line attributed to the innermost open span."""
        if not self.config.allows(level):
            return

        if self._stack:
            top = self._stack[-1]
            module, function = top.module, top.name
        else:
            module, function = "", ""

        self._emit(level, module, function, f"{message} {_meta_suffix(meta)}".strip(), meta)


def _digest(data):
    return hashlib.md5(data).hexdigest()[:8]


def _summarize_array(arr):
    shape = "x".join(str(s) for s in arr.shape)
    # Small arrays are fingerprinted by content, large ones only by shape
    payload = arr.tobytes() if 0 < arr.size < 1000 else str(arr.shape).encode()
    return f"ndarray({arr.dtype},{shape},h={_digest(payload)})"


def _summarize_model(model):
    names = list(type(model).model_fields)[:3]
    return f"{type(model).__name__}(fields={names}...)"


def _summarize_str(text):
    if len(text) > 50:
        return f"str(len={len(text)},h={_digest(text.encode())})"
    return repr(text)


def _summarize_bytes(data):
    return f"bytes(len={len(data)},h={_digest(data)})"


def _summarize_sequence(seq):
    kind = type(seq).__name__
    if not seq:
        return f"{kind}(len=0)"
    return f"{kind}(len={len(seq)},first={type(seq[0]).__name__})"


def _summarize_dict(mapping):
    keys = ",".join(str(k) for k in list(mapping)[:5])
    return f"dict(len={len(mapping)},keys=[{keys}])"


_SUMMARIZERS = (
    (np.ndarray, _summarize_array),
    (BaseModel, _summarize_model),
    (str, _summarize_str),
    (bytes, _summarize_bytes),
    ((list, tuple), _summarize_sequence),
    (dict, _summarize_dict),
    ((bool, int, float), str),
)


def summarize(obj, max_len=200):
    """
    Short, bounded description of a value for trace lines.

    Arrays and long strings are fingerprinted instead of printed, so a
    summary never exceeds max_len characters.
    """
    if obj is None:
        return "None"

    text = f"<{type(obj).__name__}>"
    for kind, describe in _SUMMARIZERS:
        if isinstance(obj, kind):
            text = describe(obj)
            break

    if len(text) > max_len:
        return text[:max_len - 3] + "..."
    return text


def trace(label=None, arg_names=None):
    """
    Run the decorated function inside a tracer span.

    The span is named label (default: the function name) under the last
    component of the function's module. Keyword arguments named in
    arg_names are added to the start line.
    """
    def decorator(func):
        module = (func.__module__ or "").rsplit(".", 1)[-1]
        name = label or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if not _tracer.config.enabled:
                return func(*args, **kwargs)

            meta = {key: kwargs[key] for key in (arg_names or ()) if key in kwargs}
            with _tracer.span(name, module=module, **meta):
                return func(*args, **kwargs)

        return wrapper
    return decorator


_tracer = Tracer()


def get_tracer():
    return _tracer


def configure_tracer(enabled=False, level=DEFAULT_LEVEL, file_path=None, json_output=False):
    """Configure the process-wide tracer."""
    _tracer.config.configure(
        enabled=enabled,
        level=level,
        file_path=file_path,
        json_output=json_output,
    )
