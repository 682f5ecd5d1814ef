"""Small helpers: strings, JSON, database configuration and execution."""

import base64
import dataclasses
import json
import os
import re
import time

from . import logger
from .consts import RESULT_FAILURE, RESULT_ONGOING, DtmError, DtmFailure, DtmOngoing
from .db_special import get_db_special

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1

_HTTP_OK = 200
_HTTP_CONFLICT = 409
_HTTP_TOO_EARLY = 425


@dataclasses.dataclass
class DBConf:
    """Connection settings for a business database."""

    driver: str = ""
    host: str = ""
    port: int = 0
    user: str = ""
    password: str = ""


def or_string(*args):
    """Return the first non-empty string, or an empty string."""
    return next((s for s in args if s), "")


def must_atoi(text):
    """Parse a decimal integer the strict way, raising ValueError otherwise."""
    if _INT_PATTERN.fullmatch(text or ""):
        value = int(text)
        if _INT_MIN <= value <= _INT_MAX:
            return value
    raise ValueError("convert to int error: " + str(text))


def _json_default(obj):
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, (bytes, bytearray)):
        return base64.b64encode(bytes(obj)).decode("ascii")
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def to_json(value):
    """Encode value as compact JSON text."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_json_default)


def from_json(text):
    """Decode JSON from text or bytes."""
    return json.loads(text)


def remarshal(value):
    """Encode value to JSON and decode it back into plain Python data."""
    return from_json(to_json(value))


def as_error(value):
    """Wrap an arbitrary raised value as an exception."""
    logger.error("panic wrapped to error: '%s'", value)
    if isinstance(value, BaseException):
        return value
    return RuntimeError(str(value))


def may_replace_localhost(host):
    """Point localhost at the docker host when running inside docker."""
    if os.environ.get("IS_DOCKER"):
        return host.replace("localhost", "host.docker.internal", 1)
    return host


def get_dsn(conf):
    """Build the driver-specific data source name for conf."""
    host = may_replace_localhost(conf.host)
    if conf.driver == "mysql":
        return (
            f"{conf.user}:{conf.password}@tcp({host}:{conf.port})/"
            "?charset=utf8mb4&parseTime=true&loc=Local&interpolateParams=true"
        )
    if conf.driver == "postgres":
        return (
            f"host={host} user={conf.user} password={conf.password} "
            f"dbname='' port={conf.port} sslmode=disable"
        )
    raise ValueError(f"unknow driver: {conf.driver}")


def masked_dsn(conf):
    """Return the data source name with the password masked out."""
    return get_dsn(conf).replace(conf.password, "****", 1)


def _rows_affected(db, result):
    if isinstance(result, int) and not isinstance(result, bool):
        return result
    count = getattr(result, "rowcount", None)
    if count is None:
        count = getattr(db, "rowcount", None)
    if count is None:
        raise TypeError("cannot determine affected rows from database result")
    return int(count)


def db_exec(db, sql, *args):
    """Execute sql on db with the current placeholder style; return rows affected."""
    if not sql:
        return 0
    began = time.monotonic()
    sql = get_db_special().place_hold_sql(sql)
    try:
        result = db.execute(sql, args)
        affected = _rows_affected(db, result)
    except Exception as exc:
        used = int((time.monotonic() - began) * 1000)
        logger.error("used: %d ms exec error: %s for %s %s", used, exc, sql, list(args))
        raise
    used = int((time.monotonic() - began) * 1000)
    logger.debug("used: %d ms affected: %d for %s %s", used, affected, sql, list(args))
    return affected


def resp_as_error(status_code, text):
    """Translate an HTTP status and body into a dtm error, or None on success."""
    if status_code == _HTTP_TOO_EARLY or RESULT_ONGOING in text:
        return DtmOngoing(f"{text}. {RESULT_ONGOING}")
    if status_code == _HTTP_CONFLICT or RESULT_FAILURE in text:
        return DtmFailure(f"{text}. {RESULT_FAILURE}")
    if status_code != _HTTP_OK:
        return DtmError(text)
    return None