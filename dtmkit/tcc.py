"""TCC transactions: try, then confirm or cancel every branch."""

import contextlib

from .consts import BRANCH_CANCEL, BRANCH_CONFIRM, BRANCH_TRY
from .trans_base import TransBase, call_dtm, register_branch, request_branch
from .utils import to_json


class Tcc(TransBase):
    """A TCC global transaction."""

    def call_branch(self, body, try_url, confirm_url, cancel_url):
        """Register a branch, call its try step and return the response."""
        branch_id = self.new_sub_branch_id()
        register_branch(
            self,
            {
                "data": to_json(body),
                "branch_id": branch_id,
                BRANCH_CONFIRM: confirm_url,
                BRANCH_CANCEL: cancel_url,
            },
            "registerBranch",
        )
        return request_branch(self, body, branch_id, BRANCH_TRY, try_url)


def tcc_global_transaction(dtm, gid, tcc_func, custom=None):
    """Run tcc_func inside a TCC transaction: submit if it returns, abort if it raises."""
    tcc = Tcc(gid=gid, trans_type="tcc", dtm=dtm)
    if custom is not None:
        custom(tcc)
    call_dtm(tcc, tcc, "prepare")
    try:
        result = tcc_func(tcc)
    except BaseException:
        with contextlib.suppress(Exception):
            call_dtm(tcc, tcc, "abort")
        raise
    call_dtm(tcc, tcc, "submit")
    return result


def tcc_from_query(qs):
    """Rebuild a TCC transaction from a branch request's query parameters."""
    tcc = Tcc.from_query(qs)
    if not tcc.dtm or not tcc.gid:
        raise ValueError(
            f"bad tcc info. dtm: {tcc.dtm}, gid: {tcc.gid} parentID: {tcc.branch_id}"
        )
    return tcc