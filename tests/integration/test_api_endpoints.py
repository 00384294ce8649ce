"""API endpoint integration tests."""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from payroll_run_engine.models import EmployeeSalary

pytestmark = pytest.mark.asyncio

BASE = "/api/v1/payroll-runs"


async def create_run(client: AsyncClient, headers: dict, period_id, **payload) -> dict:
    response = await client.post(BASE, json={"pay_period_id": str(period_id), **payload}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def post_step(client: AsyncClient, headers: dict, run_id: str, step: str) -> dict:
    response = await client.post(f"{BASE}/{run_id}/{step}", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


async def computed_run(client: AsyncClient, headers: dict, period_id) -> str:
    run_id = (await create_run(client, headers, period_id))["run_id"]
    for step in ("validate", "proceed-to-calculate", "calculate"):
        await post_step(client, headers, run_id, step)
    return run_id


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert "timestamp" in data
        assert data["engine_version"]

    async def test_ready(self, client: AsyncClient):
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    async def test_live(self, client: AsyncClient):
        response = await client.get("/live")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}


class TestIdentityHeaders:
    async def test_company_header_required(self, client: AsyncClient, seeded):
        response = await client.get(f"{BASE}/{uuid4()}")
        assert response.status_code == 400
        assert response.json()["detail"] == "X-Company-ID header is required"

    async def test_company_header_must_be_uuid(self, client: AsyncClient, seeded):
        response = await client.get(f"{BASE}/{uuid4()}", headers={"X-Company-ID": "acme"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid X-Company-ID format"

    async def test_role_without_access(self, client: AsyncClient, seeded, headers):
        response = await client.post(
            BASE,
            json={"pay_period_id": str(seeded.period_id)},
            headers={**headers, "X-User-Role": "employee"},
        )
        assert response.status_code == 403
        assert response.json()["code"] == "PERMISSION_DENIED"


class TestCreateRun:
    async def test_create(self, client: AsyncClient, seeded, headers):
        data = await create_run(client, headers, seeded.period_id)

        assert data["ok"] is True
        assert data["run_number"].startswith("RUN-")
        assert data["message"] == f"Payroll run {data['run_number']} created."

    async def test_second_active_run_conflicts(self, client: AsyncClient, seeded, headers):
        await create_run(client, headers, seeded.period_id)

        response = await client.post(BASE, json={"pay_period_id": str(seeded.period_id)}, headers=headers)

        assert response.status_code == 409
        assert response.json()["code"] == "ACTIVE_RUN_EXISTS"

    async def test_unknown_period(self, client: AsyncClient, seeded, headers):
        response = await client.post(BASE, json={"pay_period_id": str(uuid4())}, headers=headers)

        assert response.status_code == 404
        assert response.json() == {
            "detail": "Pay period not found for active company.",
            "code": "PAY_PERIOD_NOT_FOUND",
        }

    async def test_unknown_run_type(self, client: AsyncClient, seeded, headers):
        response = await client.post(
            BASE,
            json={"pay_period_id": str(seeded.period_id), "run_type": "SPECIAL"},
            headers=headers,
        )
        assert response.status_code == 422

    async def test_scoped_create(self, client: AsyncClient, seeded, headers):
        employee_id = str(seeded.employee_ids["E001"])
        data = await create_run(client, headers, seeded.period_id, employee_ids=[employee_id])

        run = (await client.get(f"{BASE}/{data['run_id']}", headers=headers)).json()
        assert run["total_employees"] == 1
        assert run["scope"]["employee_ids"] == [employee_id]
        assert run["status_code"] == "DRAFT"
        assert run["process_steps"][0]["notes"]["scope"]["employee_ids"] == [employee_id]


class TestRunLifecycle:
    """Drive a run through every step over HTTP."""

    async def test_full_lifecycle(self, client: AsyncClient, seeded, headers):
        run_id = (await create_run(client, headers, seeded.period_id))["run_id"]

        validation = await post_step(client, headers, run_id, "validate")
        assert validation["is_valid"] is True
        assert validation["employee_count"] == 2

        await post_step(client, headers, run_id, "proceed-to-calculate")
        calculation = await post_step(client, headers, run_id, "calculate")
        assert calculation["processed_count"] == 2
        assert Decimal(calculation["total_gross"]) == Decimal("25000")
        assert Decimal(calculation["total_net"]) == Decimal("21805.05")
        assert Decimal(calculation["total_employer_cost"]) == Decimal("26650")

        await post_step(client, headers, run_id, "proceed-to-review")
        await post_step(client, headers, run_id, "complete-review")
        await post_step(client, headers, run_id, "generate-payslips")
        closed = await post_step(client, headers, run_id, "close")
        assert closed["message"] == "Payroll run closed successfully."

        response = await client.get(f"{BASE}/{run_id}", headers=headers)
        assert response.status_code == 200
        run = response.json()
        assert run["status_code"] == "PAID"
        assert run["current_step_number"] == 6
        assert [step["status"] for step in run["process_steps"]] == ["COMPLETED"] * 6

        reopened = await post_step(client, headers, run_id, "reopen")
        assert reopened["ok"] is True

    async def test_payslips(self, client: AsyncClient, seeded, headers):
        run_id = await computed_run(client, headers, seeded.period_id)

        response = await client.get(f"{BASE}/{run_id}/payslips", headers=headers)

        assert response.status_code == 200
        payslips = {p["employee_id"]: p for p in response.json()}
        first = payslips[str(seeded.employee_ids["E001"])]
        assert Decimal(first["net_pay"]) == Decimal("12505.05")
        assert [line["description"] for line in first["earnings"]] == ["Basic Pay"]
        assert first["deductions"][-1]["reference_type"] == "LOAN"

    async def test_invalid_transition(self, client: AsyncClient, seeded, headers):
        run_id = (await create_run(client, headers, seeded.period_id))["run_id"]

        response = await client.post(f"{BASE}/{run_id}/close", headers=headers)

        assert response.status_code == 400
        assert response.json() == {
            "detail": "Payroll run is not in a closable state.",
            "code": "INVALID_TRANSITION",
        }

    async def test_unknown_run(self, client: AsyncClient, seeded, headers):
        response = await client.get(f"{BASE}/{uuid4()}", headers=headers)

        assert response.status_code == 404
        assert response.json()["code"] == "RUN_NOT_FOUND"

    async def test_calculation_failure(self, client: AsyncClient, seeded, headers, session_factory):
        run_id = (await create_run(client, headers, seeded.period_id))["run_id"]
        await post_step(client, headers, run_id, "validate")
        async with session_factory() as session:
            await session.execute(update(EmployeeSalary).values(is_active=False))
            await session.commit()

        response = await client.post(f"{BASE}/{run_id}/calculate", headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "CALCULATION_FAILED"
        run = (await client.get(f"{BASE}/{run_id}", headers=headers)).json()
        assert run["status_code"] == "VALIDATING"
        assert run["process_steps"][2]["status"] == "FAILED"
        assert "No employees were processed" in run["process_steps"][2]["notes"]["error"]


class TestAdjustmentEndpoints:
    async def _payslip(self, client, headers, run_id, employee_id) -> dict:
        response = await client.get(f"{BASE}/{run_id}/payslips", headers=headers)
        return next(p for p in response.json() if p["employee_id"] == str(employee_id))

    async def test_add_and_remove(self, client: AsyncClient, seeded, headers):
        run_id = await computed_run(client, headers, seeded.period_id)
        payslip = await self._payslip(client, headers, run_id, seeded.employee_ids["E002"])
        url = f"{BASE}/{run_id}/payslips/{payslip['id']}/adjustments"

        response = await client.post(
            url,
            json={"kind": "EARNING", "description": "Rice subsidy", "amount": "500", "is_taxable": False},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        adjusted = response.json()
        assert Decimal(adjusted["gross_pay"]) == Decimal("10500")
        line = adjusted["earnings"][-1]
        assert line["description"] == "Rice subsidy"

        run = (await client.get(f"{BASE}/{run_id}", headers=headers)).json()
        assert Decimal(run["total_gross_pay"]) == Decimal("25500")

        response = await client.delete(f"{url}/{line['id']}", headers=headers)
        assert response.status_code == 200
        assert Decimal(response.json()["gross_pay"]) == Decimal("10000")

    @pytest.mark.parametrize(
        "payload",
        [
            {"kind": "EARNING", "description": "Bonus", "amount": "0"},
            {"kind": "EARNING", "description": "", "amount": "10"},
            {"kind": "REFUND", "description": "Bonus", "amount": "10"},
            {"kind": "DEDUCTION", "description": "x" * 201, "amount": "10"},
        ],
    )
    async def test_rejects_invalid_payload(self, client: AsyncClient, seeded, headers, payload):
        run_id = await computed_run(client, headers, seeded.period_id)
        payslip = await self._payslip(client, headers, run_id, seeded.employee_ids["E002"])

        response = await client.post(
            f"{BASE}/{run_id}/payslips/{payslip['id']}/adjustments", json=payload, headers=headers
        )

        assert response.status_code == 422

    async def test_unknown_payslip(self, client: AsyncClient, seeded, headers):
        run_id = await computed_run(client, headers, seeded.period_id)

        response = await client.post(
            f"{BASE}/{run_id}/payslips/{uuid4()}/adjustments",
            json={"kind": "EARNING", "description": "Bonus", "amount": "10"},
            headers=headers,
        )

        assert response.status_code == 404
        assert response.json()["code"] == "PAYSLIP_NOT_FOUND"

    async def test_non_adjustment_line_cannot_be_removed(self, client: AsyncClient, seeded, headers):
        run_id = await computed_run(client, headers, seeded.period_id)
        payslip = await self._payslip(client, headers, run_id, seeded.employee_ids["E002"])
        basic_line = payslip["earnings"][0]["id"]

        response = await client.delete(
            f"{BASE}/{run_id}/payslips/{payslip['id']}/adjustments/{basic_line}", headers=headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "ADJUSTMENT_NOT_ALLOWED"
