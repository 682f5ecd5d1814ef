# dtmkit

A Python client toolkit for a distributed transaction manager server.
It builds and submits global transactions over HTTP and gives participant
services the tools to take part in them safely.

Supported transaction patterns:

- **Saga**: `dtmkit.saga.Saga`: ordered steps, each with an action and a compensation,
  with optional concurrent execution and branch ordering.
- **TCC**: `dtmkit.tcc.tcc_global_transaction` and `Tcc.call_branch`: try/confirm/cancel branches.
- **XA**: `dtmkit.xa.XaClient`: two-phase commit across local database branches.
- **Reliable messages**: `dtmkit.msg.Msg`: prepare, run local work, then submit.
- **Sub-transaction barrier**: `dtmkit.barrier.BranchBarrier`: guards participant handlers
  against duplicate requests, empty compensation and hanging.

## Installation

```
pip install dtmkit
```

## A saga

```python
from dtmkit.saga import Saga

busi = "http://localhost:8081/api/busi"
saga = (
    Saga("http://localhost:36789/api/dtmsvr", "gid-001")
    .add(busi + "/TransOut", busi + "/TransOutRevert", {"amount": 30})
    .add(busi + "/TransIn", busi + "/TransInRevert", {"amount": 30})
)
saga.submit()
```

A fresh global id can be requested from the server with
`dtmkit.trans_base.must_gen_gid(server)`.

## A TCC transaction

```python
from dtmkit.tcc import tcc_global_transaction

def body(tcc):
    tcc.call_branch({"amount": 30}, busi + "/TransOut", busi + "/TransOutConfirm", busi + "/TransOutRevert")
    return tcc.call_branch({"amount": 30}, busi + "/TransIn", busi + "/TransInConfirm", busi + "/TransInRevert")

tcc_global_transaction("http://localhost:36789/api/dtmsvr", "gid-002", body)
```

If the body raises, the global transaction is aborted and the exception
propagates; otherwise it is submitted.

## Barriers in a participant

```python
from dtmkit.barrier import barrier_from_query

barrier = barrier_from_query(request_query_params)
barrier.call_with_db(db, lambda tx: tx.execute("update ..."))
```

## Errors

Results reported by participants map onto exceptions in `dtmkit.consts`:
`DtmFailure` for a definite failure (the transaction rolls back) and
`DtmOngoing` for "not finished yet, retry later". Both derive from `DtmError`.

## Database dialects

SQL issued by the barrier and the XA helpers adapts to the current dialect,
chosen with `dtmkit.db_special.set_current_db_type("mysql")` or `"postgres"`.

## Running the tests

```
pip install -e .[test]
pytest
```