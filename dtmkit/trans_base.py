"""Transaction state shared by every transaction type, and its HTTP calls to dtm."""

from dataclasses import dataclass, field
from urllib.parse import parse_qs

import requests

from . import logger
from .consts import RESULT_FAILURE, DtmError
from .utils import may_replace_localhost, resp_as_error, to_json

_MAX_SUB_BRANCH_ID = 99
_MAX_BRANCH_ID_LEN = 20
_HTTP_OK = 200

_session = requests.Session()
_passthrough_headers = []
_barrier_table_name = "dtm_barrier.barrier"
_xa_sql_timeout_ms = 15000


def get_http_session():
    """Return the shared HTTP session used for every call."""
    return _session


def set_passthrough_headers(headers):
    """Set the headers the dtm server saves and passes on to every branch."""
    global _passthrough_headers
    _passthrough_headers = list(headers)


def get_passthrough_headers():
    """Return a copy of the configured passthrough headers."""
    return list(_passthrough_headers)


def set_barrier_table_name(name):
    """Set the table that holds barrier records."""
    global _barrier_table_name
    _barrier_table_name = name


def get_barrier_table_name():
    """Return the table that holds barrier records."""
    return _barrier_table_name


def set_xa_sql_timeout_ms(ms):
    """Set the timeout for XA statements, in milliseconds."""
    global _xa_sql_timeout_ms
    _xa_sql_timeout_ms = ms


def get_xa_sql_timeout_ms():
    """Return the timeout for XA statements, in milliseconds."""
    return _xa_sql_timeout_ms


def _query_value(qs, key):
    """Return the first value of key from a query string or mapping."""
    if isinstance(qs, str):
        qs = parse_qs(qs, keep_blank_values=True)
    value = qs.get(key, "")
    if isinstance(value, (list, tuple)):
        return value[0] if value else ""
    return value or ""


@dataclass
class BranchIDGen:
    """Generates the ids of sub-branches below a branch."""

    branch_id: str = ""
    sub_branch_id: int = 0

    def new_sub_branch_id(self):
        """Advance and return the next sub-branch id."""
        if self.sub_branch_id >= _MAX_SUB_BRANCH_ID:
            raise ValueError("branch id is larger than 99")
        if len(self.branch_id) >= _MAX_BRANCH_ID_LEN:
            raise ValueError("total branch id is longer than 20")
        self.sub_branch_id += 1
        return self.current_sub_branch_id()

    def current_sub_branch_id(self):
        """Return the current sub-branch id."""
        return f"{self.branch_id}{self.sub_branch_id:02d}"


@dataclass
class TransOptions:
    """Options the dtm server applies to a global transaction."""

    wait_result: bool = False
    timeout_to_fail: int = 0
    retry_interval: int = 0
    passthrough_headers: list = field(default_factory=list)
    branch_headers: dict = field(default_factory=dict)


@dataclass
class TransBase(TransOptions, BranchIDGen):
    """State common to all global transactions."""

    passthrough_headers: list = field(default_factory=get_passthrough_headers)
    gid: str = ""
    trans_type: str = ""
    dtm: str = ""
    custom_data: str = ""
    steps: list = field(default_factory=list)
    payloads: list = field(default_factory=list)
    bin_payloads: list = field(default_factory=list)
    op: str = ""
    query_prepared: str = ""

    @classmethod
    def from_query(cls, qs):
        """Build the transaction described by a request's query parameters."""
        return cls(
            gid=_query_value(qs, "gid"),
            trans_type=_query_value(qs, "trans_type"),
            dtm=_query_value(qs, "dtm"),
            branch_id=_query_value(qs, "branch_id"),
        )

    def to_payload(self):
        """Return the JSON body the dtm server expects for this transaction."""
        payload = {"gid": self.gid, "trans_type": self.trans_type}
        optional = {
            "custom_data": self.custom_data,
            "wait_result": self.wait_result,
            "timeout_to_fail": self.timeout_to_fail,
            "retry_interval": self.retry_interval,
            "passthrough_headers": list(self.passthrough_headers),
            "branch_headers": dict(self.branch_headers),
            "steps": [dict(step) for step in self.steps],
            "payloads": list(self.payloads),
            "query_prepared": self.query_prepared,
        }
        payload.update((key, value) for key, value in optional.items() if value)
        return payload


def _send(method, url, body=None, params=None, headers=None):
    url = may_replace_localhost(url)
    send_headers = dict(headers or {})
    data = None
    if body is not None:
        if isinstance(body, (str, bytes)):
            data = body
        else:
            data = to_json(body).encode("utf-8")
            send_headers.setdefault("Content-Type", "application/json")
    logger.debug("requesting: %s %s %s", method, url, to_json(body))
    resp = _session.request(method, url, data=data, params=params, headers=send_headers)
    logger.debug("requested: %s %s %s", method, resp.url, resp.text)
    return resp


def call_dtm(tb, body, operation):
    """Post body to the dtm server's operation; raise DtmError on refusal."""
    if isinstance(body, TransBase):
        body = body.to_payload()
    resp = _send("POST", f"{tb.dtm}/{operation}", body=body)
    if resp.status_code != _HTTP_OK or RESULT_FAILURE in resp.text:
        raise DtmError(resp.text)


def register_branch(tb, added, operation):
    """Register a branch of tb with the dtm server."""
    payload = {"gid": tb.gid, "trans_type": tb.trans_type}
    payload.update(added)
    call_dtm(tb, payload, operation)


def request_branch(tb, body, branch_id, op, url):
    """Call a branch of tb at url and return the response; raise on a dtm error."""
    params = {
        "dtm": tb.dtm,
        "gid": tb.gid,
        "branch_id": branch_id,
        "trans_type": tb.trans_type,
        "op": op,
    }
    resp = _send("POST", url, body=body, params=params, headers=tb.branch_headers)
    err = resp_as_error(resp.status_code, resp.text)
    if err is not None:
        raise err
    return resp


def must_gen_gid(server):
    """Ask the dtm server for a new global transaction id."""
    try:
        resp = _send("GET", server + "/newGid")
    except requests.RequestException as exc:
        raise DtmError(f"newGid error: {exc}, resp: ") from exc
    gid = ""
    if resp.ok:
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            gid = data.get("gid") or ""
    if not gid:
        raise DtmError(f"newGid error: None, resp: {resp.text}")
    return gid