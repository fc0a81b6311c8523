from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

from .. import config


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditCheck:
    allowed: bool
    cost: int
    current_balance: int
    operation: str = ""
    count: int = 0


class CreditGate(Protocol):
    """
    Balance check guarding billable operations.

    ``check`` never changes the balance. ``confirm`` is called only after the
    gated work finished, with the count that was actually produced.
    """

    def check(self, operation: str, count: int = 1) -> CreditCheck: ...

    def confirm(self, operation: str, count: int) -> int: ...


class CreditDeniedError(RuntimeError):
    def __init__(self, check: CreditCheck) -> None:
        super().__init__(
            f"Insufficient credits for {check.operation}: need {check.cost}, have {check.current_balance}"
        )
        self.check = check


def operation_cost(operation: str, count: int = 1, costs: Optional[Mapping[str, int]] = None) -> int:
    table = config.CREDIT_COSTS if costs is None else costs
    return table.get(operation, 0) * max(0, count)


class LocalCreditGate:
    """In-memory balance, for the CLI and for tests."""

    def __init__(self, balance: int, costs: Optional[Mapping[str, int]] = None) -> None:
        if balance < 0:
            raise ValueError("Balance cannot be negative")
        self.balance = balance
        self.costs = dict(config.CREDIT_COSTS if costs is None else costs)
        self.charged = 0

    def check(self, operation: str, count: int = 1) -> CreditCheck:
        cost = operation_cost(operation, count, self.costs)
        return CreditCheck(cost <= self.balance, cost, self.balance, operation, count)

    def confirm(self, operation: str, count: int) -> int:
        cost = operation_cost(operation, count, self.costs)
        if cost > self.balance:
            raise CreditDeniedError(CreditCheck(False, cost, self.balance, operation, count))
        self.balance -= cost
        self.charged += cost
        logger.info("Charged %d credit(s) for %d x %s, %d left", cost, count, operation, self.balance)
        return cost


def require_credits(gate: CreditGate, operation: str, count: int = 1) -> CreditCheck:
    check = gate.check(operation, count)
    if not check.allowed:
        logger.warning("Credit gate refused %s x %d (cost %d, balance %d)", operation, count, check.cost, check.current_balance)
        raise CreditDeniedError(check)
    return check
