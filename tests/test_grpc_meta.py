import pytest

from dtmkit.consts import DtmFailure, DtmOngoing
from dtmkit.grpc_meta import (
    GrpcCode,
    GrpcStatusError,
    barrier_from_metadata,
    dtm_error_to_grpc_error,
    get_meta,
    map_to_kvs,
    tcc_from_metadata,
    trans_base_from_metadata,
    trans_info_to_metadata,
)

DTM = "dtm.example.com:36790"


def test_empty_metadata_errors():
    with pytest.raises(ValueError):
        barrier_from_metadata({})
    with pytest.raises(ValueError):
        tcc_from_metadata({})


def test_metadata_round_trip():
    md = trans_info_to_metadata("g1", "tcc", "01", "try", DTM)
    assert md[0] == ("dtm-gid", "g1")
    tb = trans_base_from_metadata(md)
    assert (tb.gid, tb.trans_type, tb.branch_id, tb.op, tb.dtm) == ("g1", "tcc", "01", "try", DTM)


def test_barrier_from_metadata():
    md = trans_info_to_metadata("g2", "saga", "01", "action", DTM)
    barrier = barrier_from_metadata(md)
    assert (barrier.trans_type, barrier.gid, barrier.branch_id, barrier.op) == (
        "saga",
        "g2",
        "01",
        "action",
    )


def test_tcc_from_metadata():
    md = trans_info_to_metadata("g3", "tcc", "01", "try", DTM)
    tcc = tcc_from_metadata(md)
    assert tcc.dtm == DTM
    assert tcc.new_sub_branch_id() == "0101"


def test_get_meta_mapping_and_case():
    md = {"Test_Header": ["test", "other"]}
    assert get_meta(md, "test_header") == "test"
    assert get_meta(md, "missing") == ""


def test_map_to_kvs():
    assert map_to_kvs({"a": "1", "b": "2"}) == ["a", "1", "b", "2"]
    assert map_to_kvs({}) == []


def test_dtm_error_to_grpc_error():
    failure = dtm_error_to_grpc_error(DtmFailure())
    assert isinstance(failure, GrpcStatusError)
    assert failure.code == GrpcCode.ABORTED
    assert str(failure) == "rpc error: code = Aborted desc = FAILURE"
    ongoing = dtm_error_to_grpc_error(DtmOngoing())
    assert ongoing.code == GrpcCode.FAILED_PRECONDITION
    assert str(ongoing) == "rpc error: code = FailedPrecondition desc = ONGOING"
    other = ValueError("x")
    assert dtm_error_to_grpc_error(other) is other
    assert dtm_error_to_grpc_error(None) is None