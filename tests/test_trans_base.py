import json
from urllib.parse import parse_qs, urlsplit

import pytest
import responses

from dtmkit.consts import DtmError, DtmFailure, DtmOngoing
from dtmkit.trans_base import (
    BranchIDGen,
    TransBase,
    TransOptions,
    call_dtm,
    get_barrier_table_name,
    get_http_session,
    get_passthrough_headers,
    get_xa_sql_timeout_ms,
    must_gen_gid,
    register_branch,
    request_branch,
    set_barrier_table_name,
    set_passthrough_headers,
    set_xa_sql_timeout_ms,
)

DTM = "http://dtm.example.com/api/dtmsvr"
BUSI = "http://busi.example.com/api/busi"


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    monkeypatch.delenv("IS_DOCKER", raising=False)
    headers = get_passthrough_headers()
    table = get_barrier_table_name()
    timeout = get_xa_sql_timeout_ms()
    set_passthrough_headers([])
    yield
    set_passthrough_headers(headers)
    set_barrier_table_name(table)
    set_xa_sql_timeout_ms(timeout)


def test_branch_id_too_long():
    gen = BranchIDGen(branch_id="12345678901234567890123")
    with pytest.raises(ValueError):
        gen.new_sub_branch_id()


def test_sub_branch_id_over_limit():
    gen = BranchIDGen(sub_branch_id=99)
    with pytest.raises(ValueError):
        gen.new_sub_branch_id()


def test_sub_branch_ids_sequence():
    gen = BranchIDGen(branch_id="01")
    assert gen.new_sub_branch_id() == "0101"
    assert gen.new_sub_branch_id() == "0102"
    assert gen.current_sub_branch_id() == "0102"


def test_from_query_mapping_and_string():
    tb = TransBase.from_query(
        {"gid": ["g1"], "trans_type": ["tcc"], "dtm": [DTM], "branch_id": ["01"]}
    )
    assert (tb.gid, tb.trans_type, tb.dtm, tb.branch_id) == ("g1", "tcc", DTM, "01")
    empty = TransBase.from_query("a=b")
    assert (empty.gid, empty.dtm, empty.branch_id) == ("", "", "")


def test_passthrough_headers_default():
    set_passthrough_headers(["test_header"])
    tb = TransBase(gid="g1", trans_type="saga")
    assert tb.passthrough_headers == ["test_header"]
    assert tb.to_payload()["passthrough_headers"] == ["test_header"]
    assert TransOptions().passthrough_headers == []


def test_payload_omits_empty_fields():
    tb = TransBase(gid="g1", trans_type="saga", dtm=DTM, op="try")
    assert tb.to_payload() == {"gid": "g1", "trans_type": "saga"}
    tb.wait_result = True
    tb.query_prepared = BUSI + "/QueryPrepared"
    payload = tb.to_payload()
    assert payload["wait_result"] is True
    assert payload["query_prepared"] == BUSI + "/QueryPrepared"


def test_call_dtm_posts_payload():
    tb = TransBase(gid="g1", trans_type="saga", dtm=DTM, steps=[{"action": "a"}], payloads=["{}"])
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, DTM + "/submit", json={"dtm_result": "SUCCESS"})
        call_dtm(tb, tb, "submit")
        body = json.loads(rsps.calls[0].request.body)
    assert body == {
        "gid": "g1",
        "trans_type": "saga",
        "steps": [{"action": "a"}],
        "payloads": ["{}"],
    }


def test_call_dtm_failure_body():
    tb = TransBase(gid="g1", trans_type="saga", dtm=DTM)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, DTM + "/submit", json={"dtm_result": "FAILURE"})
        with pytest.raises(DtmError, match="FAILURE"):
            call_dtm(tb, tb, "submit")


def test_call_dtm_bad_status():
    tb = TransBase(gid="g1", trans_type="saga", dtm=DTM)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, DTM + "/prepare", status=500, body="oops")
        with pytest.raises(DtmError, match="oops"):
            call_dtm(tb, tb, "prepare")


def test_register_branch_merges_fields():
    tb = TransBase(gid="g1", trans_type="tcc", dtm=DTM)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, DTM + "/registerBranch", json={"dtm_result": "SUCCESS"})
        register_branch(tb, {"branch_id": "01", "confirm": BUSI + "/Confirm"}, "registerBranch")
        body = json.loads(rsps.calls[0].request.body)
    assert body == {
        "gid": "g1",
        "trans_type": "tcc",
        "branch_id": "01",
        "confirm": BUSI + "/Confirm",
    }


def test_request_branch_sends_trans_info():
    tb = TransBase(gid="g1", trans_type="tcc", dtm=DTM, branch_headers={"test_header": "test"})
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, BUSI + "/TransOut", json={"dtm_result": "SUCCESS"})
        resp = request_branch(tb, {"amount": 30}, "01", "try", BUSI + "/TransOut")
        request = rsps.calls[0].request
    assert resp.status_code == 200
    assert parse_qs(urlsplit(request.url).query) == {
        "dtm": [DTM],
        "gid": ["g1"],
        "branch_id": ["01"],
        "trans_type": ["tcc"],
        "op": ["try"],
    }
    assert request.headers["test_header"] == "test"
    assert json.loads(request.body) == {"amount": 30}


@pytest.mark.parametrize(
    "status, body, error",
    [
        (409, "conflict", DtmFailure),
        (200, '{"dtm_result":"FAILURE"}', DtmFailure),
        (425, "later", DtmOngoing),
        (200, '{"dtm_result":"ONGOING"}', DtmOngoing),
        (500, "broken", DtmError),
    ],
)
def test_request_branch_errors(status, body, error):
    tb = TransBase(gid="g1", trans_type="tcc", dtm=DTM)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, BUSI + "/TransIn", status=status, body=body)
        with pytest.raises(error):
            request_branch(tb, {}, "01", "try", BUSI + "/TransIn")


def test_must_gen_gid_unreachable():
    with responses.RequestsMock():
        with pytest.raises(DtmError):
            must_gen_gid("http://localhost:36789/api/no")


def test_must_gen_gid_ok():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, DTM + "/newGid", json={"gid": "gid-1"})
        assert must_gen_gid(DTM) == "gid-1"


def test_must_gen_gid_empty():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, DTM + "/newGid", json={"gid": ""})
        with pytest.raises(DtmError):
            must_gen_gid(DTM)


def test_settings_round_trip():
    old = get_xa_sql_timeout_ms()
    assert old == 15000
    set_xa_sql_timeout_ms(old + 1)
    assert get_xa_sql_timeout_ms() == old + 1
    assert get_barrier_table_name() == "dtm_barrier.barrier"
    set_barrier_table_name("custom.barrier")
    assert get_barrier_table_name() == "custom.barrier"
    assert get_http_session() is get_http_session()