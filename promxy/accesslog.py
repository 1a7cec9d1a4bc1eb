"""Access logging for WSGI applications and a key/value logging adapter."""

from __future__ import annotations

import io
import json
import logging
import operator
import sys
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TextIO
from urllib.parse import parse_qs, quote_plus

MAX_FORM_PREFIX = 256

APACHE_FORMAT_PATTERN = '{ip} - - [{time}] "{request} {status:d} {size:d}" {elapsed:f} {form}\n'

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_FORM_METHODS = ("POST", "PUT", "PATCH")

_settings: Dict[str, int] = {"max_form_prefix": MAX_FORM_PREFIX}


def set_max_form_prefix(size: int) -> None:
    """Set the maximum length of the form prefix written to access logs."""
    global MAX_FORM_PREFIX
    limit = operator.index(size)
    _settings["max_form_prefix"] = limit
    MAX_FORM_PREFIX = limit


def form_prefix(form: Mapping[str, Sequence[str]]) -> str:
    """Encode ``form`` as a query string, cut off at the configured maximum length."""
    limit = _settings["max_form_prefix"]
    buf = ""

    def append(text: str) -> bool:
        nonlocal buf
        if len(buf) + len(text) >= limit:
            remaining = limit - len(buf)
            if remaining > 0:
                buf += text[:remaining]
            return False
        buf += text
        return True

    for key, values in form.items():
        key_escaped = quote_plus(key)
        for value in values:
            if len(buf) >= limit:
                return buf
            if buf:
                buf += "&"
            if not append(key_escaped):
                return buf
            buf += "="
            if len(buf) + len(value) >= limit:
                remaining = limit - len(buf)
                if remaining > 0 and not append(quote_plus(value[:remaining])):
                    return buf
            elif not append(quote_plus(value)):
                return buf
    return buf


def _as_utc_aware(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def _format_apache_time(moment: datetime) -> str:
    return (
        f"{moment.day:02d}/{_MONTHS[moment.month - 1]}/{moment.year:04d} "
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )


def _format_rfc3339(moment: datetime) -> str:
    moment = _as_utc_aware(moment)
    text = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    seconds = int(offset.total_seconds()) if offset is not None else 0
    if seconds == 0:
        return text + "Z"
    sign = "+" if seconds > 0 else "-"
    seconds = abs(seconds)
    return f"{text}{sign}{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}"


@dataclass
class ApacheLogRecord:
    """Everything recorded about one served request."""

    ip: str = ""
    time: datetime = _ZERO_TIME
    method: str = ""
    uri: str = ""
    protocol: str = ""
    status: int = 200
    response_bytes: int = 0
    elapsed_time: float = 0.0
    form_prefix: str = ""

    def log(self, out: TextIO) -> None:
        """Write the record as one Apache-style line."""
        out.write(
            APACHE_FORMAT_PATTERN.format(
                ip=self.ip,
                time=_format_apache_time(self.time),
                request=f"{self.method} {self.uri} {self.protocol}",
                status=self.status,
                size=self.response_bytes,
                elapsed=self.elapsed_time,
                form=self.form_prefix,
            )
        )

    def log_json(self, out: TextIO) -> None:
        """Write the record as one JSON line, leaving out empty fields."""
        data: Dict[str, object] = {}
        if self.ip:
            data["remoteAddr"] = self.ip
        data["time"] = _format_rfc3339(self.time)
        if self.method:
            data["method"] = self.method
        if self.uri:
            data["path"] = self.uri
        if self.protocol:
            data["protocol"] = self.protocol
        if self.status:
            data["status"] = self.status
        if self.response_bytes:
            data["responseBytes"] = self.response_bytes
        if self.elapsed_time:
            data["duration"] = self.elapsed_time
        if self.form_prefix:
            data["query"] = self.form_prefix
        text = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        text = text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
        out.write(text + "\n")


LogRecordHandler = Callable[[ApacheLogRecord], None]


def log_to_writer(out: TextIO) -> LogRecordHandler:
    """Return a handler that writes records as Apache-style lines to ``out``."""

    def handler(record: ApacheLogRecord) -> None:
        record.log(out)

    return handler


def log_json_to_writer(out: TextIO) -> LogRecordHandler:
    """Return a handler that writes records as JSON lines to ``out``."""

    def handler(record: ApacheLogRecord) -> None:
        record.log_json(out)

    return handler


def _parse_form(environ: dict) -> Dict[str, List[str]]:
    """Collect body form values (first) and query values, keeping the body readable."""
    form: Dict[str, List[str]] = {}
    method = environ.get("REQUEST_METHOD", "GET").upper()
    content_type = environ.get("CONTENT_TYPE", "").split(";", 1)[0].strip().lower()
    if method in _FORM_METHODS and content_type == "application/x-www-form-urlencoded":
        stream = environ.get("wsgi.input")
        if stream is not None:
            length = environ.get("CONTENT_LENGTH") or ""
            try:
                body = stream.read(int(length)) if length else stream.read()
            except ValueError:
                body = stream.read()
            environ["wsgi.input"] = io.BytesIO(body)
            for key, values in parse_qs(body.decode("utf-8", "replace"), keep_blank_values=True).items():
                form.setdefault(key, []).extend(values)
    query = environ.get("QUERY_STRING", "")
    for key, values in parse_qs(query, keep_blank_values=True).items():
        form.setdefault(key, []).extend(values)
    return form


class ApacheLoggingMiddleware:
    """WSGI middleware that records every request and passes it to log handlers.

    Exceptions raised by the wrapped application become a 500 response whose
    body holds the stack trace.
    """

    def __init__(self, app: Callable, *log_handlers: LogRecordHandler) -> None:
        self.app = app
        self.log_handlers = list(log_handlers)

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        record = ApacheLogRecord(
            ip=environ.get("REMOTE_ADDR", ""),
            method=environ.get("REQUEST_METHOD", ""),
            uri=environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", ""),
            protocol=environ.get("SERVER_PROTOCOL", ""),
            status=200,
            form_prefix=form_prefix(_parse_form(environ)),
        )

        body: List[bytes] = []
        response = {"status": "200 OK", "headers": []}

        def capture(status: str, headers: list, exc_info=None) -> Callable[[bytes], None]:
            response["status"] = status
            response["headers"] = list(headers)
            record.status = int(status.split(" ", 1)[0])
            return body.append

        started = time.monotonic()
        try:
            result = self.app(environ, capture)
            try:
                for chunk in result:
                    if chunk:
                        body.append(chunk)
            finally:
                close = getattr(result, "close", None)
                if close is not None:
                    close()
        except Exception:
            message = f"Error running handler: {traceback.format_exc()}\n".encode("utf-8")
            headers = [
                (name, value)
                for name, value in response["headers"]
                if name.lower() not in ("content-encoding", "content-length", "content-type")
            ]
            headers += [
                ("Content-Type", "text/plain; charset=utf-8"),
                ("X-Content-Type-Options", "nosniff"),
            ]
            response["status"] = "500 Internal Server Error"
            response["headers"] = headers
            record.status = 500
            body = [message]
        finished = time.monotonic()

        record.response_bytes = sum(len(chunk) for chunk in body)
        record.time = datetime.now(timezone.utc)
        record.elapsed_time = finished - started

        for handler in self.log_handlers:
            handler(record)

        start_response(
            response["status"],
            response["headers"],
            sys.exc_info() if record.status == 500 and sys.exc_info()[0] else None,
        )
        return body


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_MISSING = "(MISSING)"


@dataclass
class KeyValueLogger:
    """Logs alternating key/value arguments as fields of one standard-library log record.

    A ``"level"`` key selects the level (``debug``, ``info``, ``warn``, ``error``);
    without it the record is logged at INFO.
    """

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("promxy"))

    def log(self, *args) -> None:
        """Log the key/value pairs in ``args``."""
        fields: Dict[str, object] = {}
        level: Optional[int] = None
        for index in range(0, len(args), 2):
            key = args[index]
            if index + 1 < len(args):
                value = args[index + 1]
                if key == "level":
                    if isinstance(value, str) and value in _LEVELS:
                        level = _LEVELS[value]
                else:
                    fields[str(key)] = value
            else:
                fields[str(key)] = _MISSING
        message = " ".join(f"{key}={fields[key]}" for key in sorted(fields))
        self.logger.log(
            level if level is not None else logging.INFO,
            "%s",
            message,
            extra={"fields": fields},
        )