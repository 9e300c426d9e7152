"""Convert raw DevTools protocol events into canonical LogEntry records.

Two upstream shapes are handled:

* ``Runtime.consoleAPICalled`` params (console.log, console.error, ...)
* the ``entry`` object of ``Log.entryAdded`` (browser-side log entries:
  network errors, interventions, violations, ...)

Everything here is a pure function. Callers are responsible for catching
conversion errors.
"""

import json
from datetime import datetime, timezone

from console_relay.models import EntryKind, LogEntry

# Timestamps above this are taken to be epoch milliseconds, below it epoch
# seconds. Second-based values only cross it after the year 33658.
MILLIS_THRESHOLD = 1e12


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Render *dt* as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def timestamp_to_iso(ts, now_func=None) -> str:
    """Resolve an epoch timestamp in seconds or milliseconds to ISO-8601."""
    if ts is None:
        return format_iso((now_func or _now)())
    value = float(ts)
    millis = value if value > MILLIS_THRESHOLD else value * 1000
    return format_iso(datetime.fromtimestamp(millis / 1000, tz=timezone.utc))


def _first_text(*candidates) -> str:
    """First non-empty candidate as a string, or ""."""
    for value in candidates:
        if value is not None and value != "":
            return value if isinstance(value, str) else str(value)
    return ""


def _render_value(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def stringify_remote_object(remote_object: dict | None) -> str:
    """Render one console argument (a protocol RemoteObject) as text."""
    if not remote_object:
        return ""
    if "value" in remote_object:
        return _render_value(remote_object["value"])
    if "unserializableValue" in remote_object:
        return str(remote_object["unserializableValue"])
    if remote_object.get("description"):
        return str(remote_object["description"])
    return ""


def extract_location(stack_trace: dict | None) -> tuple:
    """Return ``(url, line, col)`` from the first call frame, or all None."""
    if not stack_trace or not isinstance(stack_trace.get("callFrames"), list):
        return None, None, None
    frames = stack_trace["callFrames"]
    if not frames:
        return None, None, None
    frame = frames[0]
    return frame.get("url") or None, frame.get("lineNumber"), frame.get("columnNumber")


def format_console_event(params: dict, now_func=None) -> LogEntry:
    args = params.get("args") or []
    if args:
        text = " ".join(stringify_remote_object(arg) for arg in args)
    else:
        text = _first_text(params.get("text"))

    url, line, col = extract_location(params.get("stackTrace"))

    return LogEntry(
        timestamp=timestamp_to_iso(params.get("timestamp"), now_func),
        kind=EntryKind.CONSOLE,
        level=_first_text(params.get("type")) or "log",
        text=text,
        url=url or params.get("url") or None,
        line=line,
        col=col,
        href=params.get("executionContextDescription") or None,
    )


def format_log_entry(entry: dict, now_func=None) -> LogEntry:
    return LogEntry(
        timestamp=timestamp_to_iso(entry.get("timestamp") or None, now_func),
        kind=EntryKind.LOG,
        level=_first_text(entry.get("level"), entry.get("severity")) or "info",
        text=_first_text(entry.get("text"), entry.get("message")),
        url=entry.get("url") or None,
        line=entry.get("lineNumber"),
        col=entry.get("columnNumber"),
        href=entry.get("source") or None,
    )
