"""Saga transactions: ordered actions with compensations."""

from .trans_base import TransBase, call_dtm
from .utils import to_json


class Saga(TransBase):
    """A saga global transaction."""

    def __init__(self, server, gid):
        super().__init__(gid=gid, trans_type="saga", dtm=server)
        self.orders = {}
        self.concurrent = False

    def add(self, action, compensate, post_data):
        """Add a step with its compensation; return self."""
        self.steps.append({"action": action, "compensate": compensate})
        self.payloads.append(to_json(post_data))
        return self

    def add_branch_order(self, branch, pre_branches):
        """Run branch only after every branch in pre_branches; return self."""
        self.orders[branch] = list(pre_branches)
        return self

    def enable_concurrent(self):
        """Let the branches run concurrently; return self."""
        self.concurrent = True
        return self

    def submit(self):
        """Submit the saga to the dtm server."""
        if self.concurrent:
            orders = {str(key): value for key, value in self.orders.items()}
            self.custom_data = to_json(
                {"concurrent": self.concurrent, "orders": dict(sorted(orders.items()))}
            )
        call_dtm(self, self, "submit")