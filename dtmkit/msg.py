"""Reliable messages: prepared first, submitted once the local work has committed."""

import contextlib

from .barrier import barrier_from
from .consts import DtmFailure
from .trans_base import TransBase, call_dtm
from .utils import or_string, to_json

_MSG_BRANCH_ID = "00"
_MSG_OP = "msg"


class Msg(TransBase):
    """A reliable message transaction."""

    def __init__(self, server, gid):
        super().__init__(gid=gid, trans_type="msg", dtm=server)

    def add(self, action, post_data):
        """Add a step that posts post_data to action; return self."""
        self.steps.append({"action": action})
        self.payloads.append(to_json(post_data))
        return self

    def prepare(self, query_prepared=""):
        """Prepare the message; it is submitted later."""
        self.query_prepared = or_string(query_prepared, self.query_prepared)
        call_dtm(self, self, "prepare")

    def submit(self):
        """Submit the message."""
        call_dtm(self, self, "submit")

    def prepare_and_submit(self, query_prepared, db, busi_call):
        """Prepare, run busi_call under the message barrier on db, then submit.

        If the local work or the submit fails and the barrier shows the
        local transaction was rolled back, the message is aborted.
        """
        bb = barrier_from(self.trans_type, self.gid, _MSG_BRANCH_ID, _MSG_OP)
        self.prepare(query_prepared)
        try:
            bb.call_with_db(db, busi_call)
            self.submit()
        except BaseException:
            if _rolled_back(bb, db):
                with contextlib.suppress(Exception):
                    call_dtm(self, self, "abort")
            raise


def _rolled_back(bb, db):
    try:
        bb.query_prepared(db)
    except DtmFailure:
        return True
    except Exception:
        return False
    return False