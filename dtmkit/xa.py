"""XA transactions over HTTP."""

from urllib.parse import urlsplit

from .consts import BRANCH_ACTION
from .trans_base import TransBase, call_dtm, register_branch, request_branch
from .xa_base import XaClientBase


class Xa(TransBase):
    """An XA global transaction."""

    def call_branch(self, body, url):
        """Call an XA branch at url and return the response."""
        branch_id = self.new_sub_branch_id()
        return request_branch(self, body, branch_id, BRANCH_ACTION, url)


def xa_from_query(qs):
    """Rebuild an XA transaction from a branch request's query parameters."""
    xa = Xa.from_query(qs)
    if not xa.gid or not xa.branch_id:
        raise ValueError(f"bad xa info: gid: {xa.gid} branchid: {xa.branch_id}")
    return xa


def _url_path(raw):
    if raw.startswith(":"):
        raise ValueError(f'parse "{raw}": missing protocol scheme')
    parts = urlsplit(raw)
    _ = parts.port  # raises ValueError for a malformed port
    return parts.path


class XaClient(XaClientBase):
    """XA client; register(path, client) is told where commit/rollback callbacks arrive."""

    def __init__(self, server, conf, notify_url, connect, register=None):
        path = _url_path(notify_url)
        super().__init__(server=server, conf=conf, notify_url=notify_url, connect=connect)
        if register is not None:
            register(path, self)

    def handle_callback(self, gid, branch_id, action):
        """Commit or roll back the prepared branch."""
        super().handle_callback(gid, branch_id, action)

    def xa_local_transaction(self, qs, xa_func):
        """Run xa_func(db, xa) as a local XA branch and register it with dtm."""
        xa = xa_from_query(qs)

        def local(db):
            xa_func(db, xa)
            register_branch(
                xa, {"url": self.notify_url, "branch_id": xa.branch_id}, "registerBranch"
            )

        self.handle_local_trans(xa, local)

    def xa_global_transaction(self, gid, xa_func, custom=None):
        """Run xa_func(xa) inside a global XA transaction."""
        xa = Xa(gid=gid, trans_type="xa", dtm=self.server)
        if custom is not None:
            custom(xa)
        return self.handle_global_trans(
            xa, lambda action: call_dtm(xa, xa, action), lambda: xa_func(xa)
        )