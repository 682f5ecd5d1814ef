"""SQL dialect differences between the supported databases."""

from abc import ABC, abstractmethod

from .consts import DB_TYPE_MYSQL, DB_TYPE_POSTGRES


class DBSpecial(ABC):
    """Database-specific SQL generation."""

    @abstractmethod
    def place_hold_sql(self, sql):
        """Rewrite '?' placeholders into the dialect's style."""

    @abstractmethod
    def insert_ignore_template(self, table_and_values, pg_constraint):
        """Build an insert that silently skips duplicate rows."""

    @abstractmethod
    def xa_sql(self, command, xid):
        """Build the statement for an XA command on xid."""


class MysqlDBSpecial(DBSpecial):
    def place_hold_sql(self, sql):
        return sql

    def insert_ignore_template(self, table_and_values, pg_constraint):
        return f"insert ignore into {table_and_values}"

    def xa_sql(self, command, xid):
        return f"xa {command} '{xid}'"


class PostgresDBSpecial(DBSpecial):
    def place_hold_sql(self, sql):
        first, *rest = sql.split("?")
        return first + "".join(f"${pos}{part}" for pos, part in enumerate(rest, 1))

    def insert_ignore_template(self, table_and_values, pg_constraint):
        return f"insert into {table_and_values} on conflict ON CONSTRAINT {pg_constraint} do nothing"

    def xa_sql(self, command, xid):
        return {
            "end": "",
            "start": "begin",
            "prepare": f"prepare transaction '{xid}'",
            "commit": f"commit prepared '{xid}'",
            "rollback": f"rollback prepared '{xid}'",
        }.get(command, "")


_SPECIALS = {
    DB_TYPE_MYSQL: MysqlDBSpecial(),
    DB_TYPE_POSTGRES: PostgresDBSpecial(),
}
_current_db_type = DB_TYPE_MYSQL


def get_db_special():
    """Return the dialect for the current database type."""
    return _SPECIALS[_current_db_type]


def set_current_db_type(db_type):
    """Select the current database type; raise ValueError if unknown."""
    global _current_db_type
    if db_type not in _SPECIALS:
        raise ValueError(f"unknown db type '{db_type}'")
    _current_db_type = db_type


def get_current_db_type():
    """Return the current database type."""
    return _current_db_type