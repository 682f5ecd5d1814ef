"""Sub-transaction barrier: guards branches against repeats, empty compensation and hanging."""

import contextlib
from dataclasses import dataclass

from . import logger
from .consts import (
    BRANCH_ACTION,
    BRANCH_CANCEL,
    BRANCH_COMPENSATE,
    BRANCH_TRY,
    RESULT_FAILURE,
    DtmFailure,
)
from .db_special import get_db_special
from .trans_base import _query_value, get_barrier_table_name
from .utils import db_exec

_ORIGIN_OPS = {BRANCH_CANCEL: BRANCH_TRY, BRANCH_COMPENSATE: BRANCH_ACTION}

_MSG_BRANCH_ID = "00"
_MSG_OP = "msg"
_MSG_BARRIER_ID = "01"
_ROLLBACK_REASON = "rollback"

_REDIS_CHECK_ADJUST_SCRIPT = """
local balance = redis.call('GET', KEYS[1])
local done = redis.call('GET', KEYS[2])
if balance == false or balance + ARGV[1] < 0 then
    return 'FAILURE'
end
if done ~= false then
    return
end
redis.call('SET', KEYS[2], 'op', 'EX', ARGV[3])
if ARGV[2] ~= '' then
    local origin = redis.call('GET', KEYS[3])
    if origin == false then
        redis.call('SET', KEYS[3], 'rollback', 'EX', ARGV[3])
        return
    end
end
redis.call('INCRBY', KEYS[1], ARGV[1])
"""


def _insert_barrier(tx, trans_type, gid, branch_id, op, barrier_id, reason):
    if not op:
        return 0
    sql = get_db_special().insert_ignore_template(
        get_barrier_table_name()
        + "(trans_type, gid, branch_id, op, barrier_id, reason) values(?,?,?,?,?,?)",
        "uniq_barrier",
    )
    return db_exec(tx, sql, trans_type, gid, branch_id, op, barrier_id, reason)


@dataclass
class BranchBarrier:
    """Identity of one branch operation, used to guard its business call."""

    trans_type: str
    gid: str
    branch_id: str
    op: str
    barrier_id: int = 0

    def __str__(self):
        return f"transInfo: {self.trans_type} {self.gid} {self.branch_id} {self.op}"

    def call(self, tx, busi_call):
        """Run busi_call(tx) only when needed, then commit tx; roll back on error."""
        self.barrier_id += 1
        bid = f"{self.barrier_id:02d}"
        try:
            origin_op = _ORIGIN_OPS.get(self.op, "")
            try:
                origin_affected = _insert_barrier(
                    tx, self.trans_type, self.gid, self.branch_id, origin_op, bid, self.op
                )
            except Exception:
                origin_affected = 0
            current_affected = _insert_barrier(
                tx, self.trans_type, self.gid, self.branch_id, self.op, bid, self.op
            )
            logger.debug(
                "originAffected: %d currentAffected: %d", origin_affected, current_affected
            )
            empty_compensation = self.op in _ORIGIN_OPS and origin_affected > 0
            repeated_or_hanging = current_affected == 0
            if not (empty_compensation or repeated_or_hanging):
                busi_call(tx)
        except BaseException:
            with contextlib.suppress(Exception):
                tx.rollback()
            raise
        tx.commit()

    def call_with_db(self, db, busi_call):
        """Like call, on a transaction begun on db."""
        self.call(db.begin(), busi_call)

    def query_prepared(self, db):
        """Check a prepared message; raise DtmFailure if it must be rolled back."""
        _insert_barrier(
            db,
            self.trans_type,
            self.gid,
            _MSG_BRANCH_ID,
            _MSG_OP,
            _MSG_BARRIER_ID,
            _ROLLBACK_REASON,
        )
        sql = get_db_special().place_hold_sql(
            f"select reason from {get_barrier_table_name()} "
            "where gid=? and branch_id=? and op=? and barrier_id=?"
        )
        row = db.execute(sql, (self.gid, _MSG_BRANCH_ID, _MSG_OP, _MSG_BARRIER_ID)).fetchone()
        if row is None:
            raise LookupError("no rows in result set")
        if row[0] == _ROLLBACK_REASON:
            raise DtmFailure()

    def redis_check_adjust_amount(self, rd, key, amount, barrier_expire):
        """Adjust the amount at key by amount under a redis barrier."""
        bid = f"{self.barrier_id:02d}"
        origin_op = _ORIGIN_OPS.get(self.op, "")
        current_key = f"{key}-{self.gid}-{self.branch_id}-{self.op}-{bid}"
        origin_key = f"{key}-{self.gid}-{self.branch_id}-{origin_op}-{bid}"
        result = rd.eval(
            _REDIS_CHECK_ADJUST_SCRIPT,
            3,
            key,
            current_key,
            origin_key,
            amount,
            origin_op,
            barrier_expire,
        )
        logger.debug("lua return v: %s", result)
        if isinstance(result, bytes):
            result = result.decode("utf-8")
        if result == RESULT_FAILURE:
            raise DtmFailure()


def barrier_from(trans_type, gid, branch_id, op):
    """Build a barrier; raise ValueError if any field is empty."""
    barrier = BranchBarrier(trans_type=trans_type, gid=gid, branch_id=branch_id, op=op)
    if not (trans_type and gid and branch_id and op):
        raise ValueError(f"invalid trans info: {barrier}")
    return barrier


def barrier_from_query(qs):
    """Build a barrier from a request's query parameters."""
    return barrier_from(
        _query_value(qs, "trans_type"),
        _query_value(qs, "gid"),
        _query_value(qs, "branch_id"),
        _query_value(qs, "op"),
    )