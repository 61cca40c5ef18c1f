from __future__ import annotations

import asyncio

import pytest

from aether_agents.mcp_client.confirmation import ConfirmationGate, ConfirmationRequest, RiskLevel
from aether_agents.mcp_client.errors import MCPError, MCPErrorCode


@pytest.mark.asyncio
async def test_unregistered_tools_pass_without_asking() -> None:
    asked: list[ConfirmationRequest] = []

    async def approver(request: ConfirmationRequest) -> bool:
        asked.append(request)
        return False

    gate = ConfirmationGate(approver)

    await gate.check("files", "read_file", {"path": "a.txt"})

    assert asked == []
    assert gate.needs_confirmation("read_file") is False


@pytest.mark.asyncio
async def test_approved_call_proceeds_with_summary() -> None:
    asked: list[ConfirmationRequest] = []

    async def approver(request: ConfirmationRequest) -> bool:
        asked.append(request)
        return True

    gate = ConfirmationGate(approver)
    gate.register("write_to_file", RiskLevel.HIGH, lambda args: f"Overwrite {args['path']}")

    await gate.check("files", "write_to_file", {"path": "a.txt", "content": "x"})

    assert asked[0].summary == "Overwrite a.txt"
    assert asked[0].risk is RiskLevel.HIGH
    assert asked[0].arguments == {"path": "a.txt", "content": "x"}


@pytest.mark.asyncio
async def test_default_summary_lists_arguments() -> None:
    asked: list[ConfirmationRequest] = []

    async def approver(request: ConfirmationRequest) -> bool:
        asked.append(request)
        return True

    gate = ConfirmationGate(approver)
    gate.register("delete")

    await gate.check("files", "delete", {"path": "a.txt"})

    assert asked[0].summary == "Run delete with path='a.txt'"
    assert gate.risk_level("delete") is RiskLevel.MEDIUM


@pytest.mark.asyncio
async def test_registered_tool_without_approver_is_rejected() -> None:
    gate = ConfirmationGate()
    gate.register("delete")

    with pytest.raises(MCPError) as err:
        await gate.check("files", "delete", {})

    assert err.value.code is MCPErrorCode.TOOL_CALL_FAILED
    assert err.value.tool_name == "delete"
    assert "rejected" in err.value.message


@pytest.mark.asyncio
async def test_expired_confirmation_is_rejected() -> None:
    async def never_answers(_request: ConfirmationRequest) -> bool:
        await asyncio.sleep(1.0)
        return True

    gate = ConfirmationGate(never_answers, timeout_seconds=0.01)
    gate.register("delete", RiskLevel.HIGH)

    with pytest.raises(MCPError) as err:
        await gate.check("files", "delete", {})

    assert err.value.code is MCPErrorCode.TOOL_CALL_FAILED


@pytest.mark.asyncio
async def test_unregister_removes_gate() -> None:
    gate = ConfirmationGate()
    gate.register("delete")
    gate.unregister("delete")
    gate.unregister("never-registered")

    await gate.check("files", "delete", {})

    assert gate.needs_confirmation("delete") is False
