"""Transaction information carried in gRPC metadata, and gRPC status errors."""

import enum
from collections.abc import Mapping

from .barrier import barrier_from
from .consts import RESULT_FAILURE, RESULT_ONGOING, DtmFailure, DtmOngoing
from .trans_base import TransBase

_PREFIX = "dtm-"


class GrpcCode(enum.IntEnum):
    """The gRPC status codes used by dtm."""

    OK = 0
    INTERNAL = 13
    FAILED_PRECONDITION = 9
    ABORTED = 10

    @property
    def label(self):
        return "".join(part.capitalize() for part in self.name.split("_")) if self.name != "OK" else "OK"


class GrpcStatusError(Exception):
    """An error carrying a gRPC status code and description."""

    def __init__(self, code, message):
        super().__init__(f"rpc error: code = {GrpcCode(code).label} desc = {message}")
        self.code = GrpcCode(code)
        self.message = message


def trans_info_to_metadata(gid, trans_type, branch_id, op, dtm):
    """Return the metadata pairs that describe a branch call."""
    return [
        (_PREFIX + "gid", gid),
        (_PREFIX + "trans_type", trans_type),
        (_PREFIX + "branch_id", branch_id),
        (_PREFIX + "op", op),
        (_PREFIX + "dtm", dtm),
    ]


def map_to_kvs(mapping):
    """Flatten a mapping into a key, value, key, value list."""
    return [item for pair in mapping.items() for item in pair]


def _items(metadata):
    if not metadata:
        return
    pairs = metadata.items() if isinstance(metadata, Mapping) else metadata
    for key, value in pairs:
        values = value if isinstance(value, (list, tuple)) else (value,)
        for single in values:
            yield key.lower(), single


def get_meta(metadata, name):
    """Return the first metadata value for name, or an empty string."""
    name = name.lower()
    return next((value for key, value in _items(metadata) if key == name), "")


def trans_base_from_metadata(metadata):
    """Build the transaction described by incoming metadata."""
    tb = TransBase(
        gid=get_meta(metadata, _PREFIX + "gid"),
        trans_type=get_meta(metadata, _PREFIX + "trans_type"),
        dtm=get_meta(metadata, _PREFIX + "dtm"),
        branch_id=get_meta(metadata, _PREFIX + "branch_id"),
    )
    tb.op = get_meta(metadata, _PREFIX + "op")
    return tb


def barrier_from_metadata(metadata):
    """Build a barrier from incoming metadata; raise ValueError if incomplete."""
    tb = trans_base_from_metadata(metadata)
    return barrier_from(tb.trans_type, tb.gid, tb.branch_id, tb.op)


def tcc_from_metadata(metadata):
    """Build a TCC transaction from incoming metadata; raise ValueError if incomplete."""
    tb = trans_base_from_metadata(metadata)
    if not tb.dtm or not tb.gid:
        raise ValueError(
            f"bad tcc info. dtm: {tb.dtm}, gid: {tb.gid} branchid: {tb.branch_id}"
        )
    return tb


def dtm_error_to_grpc_error(err):
    """Translate dtm failure/ongoing into gRPC status errors; pass others through."""
    if isinstance(err, DtmFailure):
        return GrpcStatusError(GrpcCode.ABORTED, RESULT_FAILURE)
    if isinstance(err, DtmOngoing):
        return GrpcStatusError(GrpcCode.FAILED_PRECONDITION, RESULT_ONGOING)
    return err