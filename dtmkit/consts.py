"""Status, branch and result names shared by every transaction type."""

STATUS_PREPARED = "prepared"
STATUS_SUBMITTED = "submitted"
STATUS_SUCCEED = "succeed"
STATUS_FAILED = "failed"
STATUS_ABORTING = "aborting"

BRANCH_TRY = "try"
BRANCH_CONFIRM = "confirm"
BRANCH_CANCEL = "cancel"
BRANCH_ACTION = "action"
BRANCH_COMPENSATE = "compensate"
BRANCH_COMMIT = "commit"
BRANCH_ROLLBACK = "rollback"

RESULT_FAILURE = "FAILURE"
RESULT_SUCCESS = "SUCCESS"
RESULT_ONGOING = "ONGOING"

DB_TYPE_MYSQL = "mysql"
DB_TYPE_POSTGRES = "postgres"
DB_TYPE_REDIS = "redis"

MAP_SUCCESS = {"dtm_result": RESULT_SUCCESS}
MAP_FAILURE = {"dtm_result": RESULT_FAILURE}


class DtmError(Exception):
    """Base for errors reported by the dtm server or by a branch."""


class DtmFailure(DtmError):
    """The transaction or branch failed and must be rolled back."""

    def __init__(self, message=RESULT_FAILURE):
        super().__init__(message)


class DtmOngoing(DtmError):
    """The transaction or branch is still in progress and should be retried."""

    def __init__(self, message=RESULT_ONGOING):
        super().__init__(message)


_RESULT_ERRORS = {
    RESULT_FAILURE: DtmFailure,
    RESULT_ONGOING: DtmOngoing,
}


def string_to_dtm_error(value):
    """Return the error a result string stands for, or None for success."""
    error_class = _RESULT_ERRORS.get(value)
    return error_class() if error_class is not None else None


def error_to_result(err):
    """Return the result string for err; None if err is not a dtm result."""
    if err is None:
        return RESULT_SUCCESS
    if isinstance(err, DtmOngoing):
        return RESULT_ONGOING
    if isinstance(err, DtmFailure):
        return RESULT_FAILURE
    return None