from __future__ import annotations

import pytest

from certdesign.pipeline.credits import CreditDeniedError, LocalCreditGate, operation_cost, require_credits


def test_check_does_not_spend() -> None:
    gate = LocalCreditGate(5)
    check = gate.check("generatePDF", 2)
    assert (check.allowed, check.cost, check.current_balance) == (True, 4, 5)
    assert gate.balance == 5
    assert gate.check("generatePDF", 3).allowed is False


def test_confirm_spends() -> None:
    gate = LocalCreditGate(5)
    assert gate.confirm("uploadToBlockChain", 1) == 3
    assert gate.balance == 2
    with pytest.raises(CreditDeniedError):
        gate.confirm("uploadToBlockChain", 1)
    assert gate.balance == 2


def test_require_credits() -> None:
    gate = LocalCreditGate(1)
    assert require_credits(gate, "validateCertificate").cost == 1
    with pytest.raises(CreditDeniedError) as info:
        require_credits(gate, "generatePDF", 1)
    assert info.value.check.cost == 2
    assert "need 2, have 1" in str(info.value)


def test_unknown_operation_is_free() -> None:
    assert operation_cost("printLabel", 10) == 0
    with pytest.raises(ValueError):
        LocalCreditGate(-1)
