"""Shared XA handling for local branches and global transactions."""

import contextlib
from collections.abc import Callable
from dataclasses import dataclass

from . import logger
from .db_special import get_db_special
from .utils import DBConf, db_exec, masked_dsn

_MISSING_XA_MARKERS = ("XAER_NOTA", "does not exist")


@dataclass
class XaClientBase:
    """XA client settings; connect(conf) opens a standalone database connection."""

    server: str
    conf: DBConf
    notify_url: str
    connect: Callable

    def _open(self):
        logger.info("opening standalone %s: %s", self.conf.driver, masked_dsn(self.conf))
        return self.connect(self.conf)

    def handle_callback(self, gid, branch_id, action):
        """Commit or roll back the prepared XA branch gid-branch_id."""
        with contextlib.closing(self._open()) as db:
            xa_id = f"{gid}-{branch_id}"
            try:
                db_exec(db, get_db_special().xa_sql(action, xa_id))
            except Exception as exc:
                # a repeated commit/rollback of the same id reports a missing xid
                if any(marker in str(exc) for marker in _MISSING_XA_MARKERS):
                    return
                raise

    def handle_local_trans(self, xa, cb):
        """Run cb(db) inside an XA branch and prepare it when cb succeeds."""
        xa_branch = f"{xa.gid}-{xa.branch_id}"
        special = get_db_special()
        with contextlib.closing(self._open()) as db:
            try:
                db_exec(db, special.xa_sql("start", xa_branch))
                cb(db)
            except BaseException:
                with contextlib.suppress(Exception):
                    db_exec(db, special.xa_sql("end", xa_branch))
                raise
            db_exec(db, special.xa_sql("end", xa_branch))
            db_exec(db, special.xa_sql("prepare", xa_branch))

    def handle_global_trans(self, xa, call_dtm, call_busi):
        """Prepare, run call_busi, then submit; abort if call_busi fails."""
        call_dtm("prepare")
        try:
            result = call_busi()
        except BaseException:
            with contextlib.suppress(Exception):
                call_dtm("abort")
            raise
        call_dtm("submit")
        return result