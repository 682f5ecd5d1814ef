"""Process-wide logging with level, output and rotation settings."""

import datetime
import gzip
import json
import logging
import os
import shutil
import sys
import time
from logging.handlers import RotatingFileHandler

STDERR = "stderr"
STDOUT = "stdout"

_LEVELS = {
    "": logging.INFO,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}
_LEVEL_NAMES = (
    (logging.CRITICAL, "fatal"),
    (logging.ERROR, "error"),
    (logging.WARNING, "warn"),
    (logging.INFO, "info"),
)
_COLORS = {"debug": 35, "info": 34, "warn": 33, "error": 31, "fatal": 31}
_DEFAULT_MAX_SIZE_MB = 100
_UNLIMITED_BACKUPS = 1000
_REQUIRED_METHODS = ("debug", "info", "warning", "error")

_internal = logging.getLogger("dtmkit.log")
_internal.propagate = False


class _Active:
    """Holds the logger that the module-level functions write to."""

    def __init__(self, logger):
        self.logger = logger


_active = _Active(_internal)


def _level_name(levelno):
    return next((name for threshold, name in _LEVEL_NAMES if levelno >= threshold), "debug")


def _timestamp(record):
    moment = datetime.datetime.fromtimestamp(record.created).astimezone()
    return moment.isoformat(timespec="milliseconds")


class _JsonFormatter(logging.Formatter):
    def format(self, record):
        entry = {
            "level": _level_name(record.levelno),
            "ts": _timestamp(record),
            "caller": f"{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["stacktrace"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class _ConsoleFormatter(logging.Formatter):
    def format(self, record):
        name = _level_name(record.levelno)
        level = f"\x1b[{_COLORS[name]}m{name.upper()}\x1b[0m"
        line = "\t".join(
            (_timestamp(record), level, f"{record.filename}:{record.lineno}", record.getMessage())
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _StdStreamHandler(logging.StreamHandler):
    """Writes to whatever sys.stdout or sys.stderr currently is."""

    def __init__(self, std_name):
        self._std_name = std_name
        super().__init__(self._current())

    def _current(self):
        return sys.stdout if self._std_name == STDOUT else sys.stderr

    def emit(self, record):
        with self.lock:
            self.stream = self._current()
            super().emit(record)

    def flush(self):
        with self.lock:
            self.stream = self._current()
            super().flush()


def _gzip_rotate(source, dest):
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.remove(source)


class _RotatingFileHandler(RotatingFileHandler):
    def __init__(self, filename, max_bytes, backup_count, max_age_days, compress):
        super().__init__(
            filename, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8", delay=True
        )
        self._max_age_days = max_age_days
        if compress:
            self.namer = lambda name: name + ".gz"
            self.rotator = _gzip_rotate

    def doRollover(self):
        super().doRollover()
        if self._max_age_days > 0:
            self._prune()

    def _prune(self):
        cutoff = time.time() - self._max_age_days * 86400
        directory, base = os.path.split(self.baseFilename)
        with os.scandir(directory or ".") as entries:
            for entry in entries:
                if (
                    entry.name.startswith(base + ".")
                    and entry.is_file()
                    and entry.stat().st_mtime < cutoff
                ):
                    os.remove(entry.path)


def _rotation_settings(config_json):
    try:
        parsed = json.loads(config_json)
    except ValueError as exc:
        fatal_if(True, "bad config LogRotateConfigJSON: %s", exc)
    fatal_if(not isinstance(parsed, dict), "bad config LogRotateConfigJSON: %s", config_json)
    return {str(key).lower(): value for key, value in parsed.items()}


def _make_handler(output, rotate, config_json):
    if output in (STDOUT, STDERR):
        return _StdStreamHandler(output)
    if rotate:
        settings = _rotation_settings(config_json)
        max_size = int(settings.get("maxsize") or 0) or _DEFAULT_MAX_SIZE_MB
        backups = int(settings.get("maxbackups") or 0) or _UNLIMITED_BACKUPS
        return _RotatingFileHandler(
            output,
            max_bytes=max_size * 1024 * 1024,
            backup_count=backups,
            max_age_days=int(settings.get("maxage") or 0),
            compress=bool(settings.get("compress")),
        )
    return logging.FileHandler(output, encoding="utf-8")


def _parse_level(level):
    levelno = None
    if level in (level.lower(), level.upper()):
        levelno = _LEVELS.get(level.lower())
    fatal_if(levelno is None, 'fatal error: unrecognized level: "%s"', level)
    return levelno


def init_log(level):
    """Log to stdout at the given level: debug, info, warn or error."""
    init_log2(level, STDOUT, 0, "")


def init_log2(level, outputs, log_rotation_enable, log_rotate_config_json):
    """Configure level, '|'-separated outputs and optional file rotation."""
    levelno = _parse_level(level)
    formatter = _ConsoleFormatter() if os.environ.get("DTM_DEBUG") else _JsonFormatter()
    handlers = []
    try:
        for output in outputs.split("|"):
            handler = _make_handler(output, bool(log_rotation_enable), log_rotate_config_json)
            handler.setFormatter(formatter)
            handlers.append(handler)
    except (OSError, SystemExit) as exc:
        for handler in handlers:
            handler.close()
        if isinstance(exc, SystemExit):
            raise
        fatal_if(True, "fatal error: %s", exc)
    for old in list(_internal.handlers):
        _internal.removeHandler(old)
        old.close()
    _internal.setLevel(levelno)
    for handler in handlers:
        _internal.addHandler(handler)
    _active.logger = _internal


def with_logger(log):
    """Replace the logger with any object offering debug/info/warning/error."""
    missing = [name for name in _REQUIRED_METHODS if not callable(getattr(log, name, None))]
    if missing:
        raise TypeError(f"logger lacks methods: {', '.join(missing)}")
    _active.logger = log


def _emit(pick, fmt, args):
    target = _active.logger
    method = pick(target)
    if isinstance(target, logging.Logger):
        method(fmt, *args, stacklevel=3)
    else:
        method(fmt, *args)


def debug(fmt, *args):
    """Log at debug level."""
    _emit(lambda target: target.debug, fmt, args)


def info(fmt, *args):
    """Log at info level."""
    _emit(lambda target: target.info, fmt, args)


def warning(fmt, *args):
    """Log at warn level."""
    _emit(lambda target: target.warning, fmt, args)


def error(fmt, *args):
    """Log at error level."""
    _emit(lambda target: target.error, fmt, args)


def fatal_if(cond, fmt, *args):
    """Exit the process with the formatted message when cond is true."""
    if not cond:
        return
    raise SystemExit(fmt % args if args else fmt)


def fatal_if_error(err):
    """Exit the process if err is not None."""
    fatal_if(err is not None, "fatal error: %s", err)


init_log(os.environ.get("LOG_LEVEL", ""))