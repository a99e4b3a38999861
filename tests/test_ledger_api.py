import pytest
from httpx import AsyncClient

from invest_backend.services.ledger_service import LedgerService


@pytest.mark.api
@pytest.mark.ledger
class TestRechargeAndPurchaseAPI:
    """Recharge, UTR verification and purchase through the HTTP surface."""

    async def _funded_recharge(self, client, auth_headers, admin_auth_headers, amount=1000, utr="X1"):
        response = await client.post("/api/recharge/request", json={"amount": amount}, headers=auth_headers)
        assert response.status_code == 200
        recharge_id = response.json()["recharge"]["id"]

        response = await client.post(
            f"/api/recharge/update-utr/{recharge_id}",
            json={"utr": utr},
            headers=auth_headers
        )
        assert response.status_code == 200

        response = await client.post(
            "/api/admin/verify-utr",
            json={"utr": utr, "action": "approve"},
            headers=admin_auth_headers
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Recharge approved successfully"
        return recharge_id

    async def test_recharge_then_purchase(
        self, client: AsyncClient, auth_headers, admin_auth_headers, products
    ):
        await self._funded_recharge(client, auth_headers, admin_auth_headers)

        profile = (await client.get("/api/user/profile", headers=auth_headers)).json()
        assert profile["recharge_balance"] == 1000.0

        catalog = (await client.get("/api/products")).json()
        starter = next(p for p in catalog if p["name"] == "Starter Plan")

        response = await client.post(
            "/api/products/purchase",
            json={"product_id": starter["id"]},
            headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Product purchased successfully"
        assert response.json()["product"]["status"] == "active"

        profile = (await client.get("/api/user/profile", headers=auth_headers)).json()
        assert profile["recharge_balance"] == 510.0
        assert profile["total_invested"] == 490.0
        assert profile["balance"] == 0.0

        response = await client.post(
            "/api/products/purchase",
            json={"product_id": starter["id"]},
            headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json() == {"error": "You can only buy this product once per month"}

        purchases = (await client.get("/api/user/products", headers=auth_headers)).json()
        assert len(purchases) == 1
        assert purchases[0]["product_name"] == "Starter Plan"

    async def test_purchase_requires_product_id(self, client: AsyncClient, auth_headers):
        response = await client.post("/api/products/purchase", json={}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Product ID is required"}

    async def test_purchase_without_funds(self, client: AsyncClient, auth_headers, starter_product):
        response = await client.post(
            "/api/products/purchase",
            json={"product_id": starter_product.id},
            headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Insufficient recharge balance"}

    async def test_catalog_is_public(self, client: AsyncClient, products):
        response = await client.get("/api/products")

        assert response.status_code == 200
        assert len(response.json()) == 10

    async def test_utr_for_another_users_recharge(
        self, client: AsyncClient, auth_headers, other_user, db_session
    ):
        recharge = await LedgerService(db_session).request_recharge(other_user.id, 300)

        response = await client.post(
            f"/api/recharge/update-utr/{recharge.id}",
            json={"utr": "STOLEN"},
            headers=auth_headers
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Recharge request not found or does not belong to user"}

    async def test_verify_utr_twice(self, client: AsyncClient, auth_headers, admin_auth_headers):
        await self._funded_recharge(client, auth_headers, admin_auth_headers)

        response = await client.post(
            "/api/admin/verify-utr",
            json={"utr": "X1", "action": "approve"},
            headers=admin_auth_headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "This recharge has already been processed"}
        profile = (await client.get("/api/user/profile", headers=auth_headers)).json()
        assert profile["recharge_balance"] == 1000.0

    async def test_daily_profit_endpoint(
        self, client: AsyncClient, auth_headers, admin_auth_headers, starter_product
    ):
        await self._funded_recharge(client, auth_headers, admin_auth_headers)
        await client.post(
            "/api/products/purchase",
            json={"product_id": starter_product.id},
            headers=auth_headers
        )

        response = await client.post("/api/products/daily-profit", headers=admin_auth_headers)
        assert response.status_code == 200
        assert response.json()["processed"] == 1

        response = await client.post("/api/products/daily-profit", headers=admin_auth_headers)
        assert response.json()["processed"] == 0
        assert response.json()["skipped"] == 1

        profile = (await client.get("/api/user/profile", headers=auth_headers)).json()
        assert profile["balance"] == 80.0

    async def test_daily_profit_requires_admin(self, client: AsyncClient, auth_headers):
        response = await client.post("/api/products/daily-profit", headers=auth_headers)
        assert response.status_code == 403


@pytest.mark.api
@pytest.mark.ledger
class TestWithdrawalAPI:
    """Withdrawal requests and admin resolution over HTTP."""

    UPI = {"amount": 200, "method": "upi", "upi_id": "user@upi"}

    async def test_withdrawal_flow(self, client: AsyncClient, auth_headers, admin_auth_headers, test_user):
        response = await client.post("/api/withdrawals/request", json=self.UPI, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"].startswith("Insufficient profit balance")

        response = await client.post(
            f"/api/admin/user/{test_user.username}/balance",
            json={"amount": 200, "reason": "Bonus"},
            headers=admin_auth_headers
        )
        assert response.status_code == 200
        assert response.json()["user"]["balance"] == 200.0

        response = await client.post("/api/withdrawals/request", json=self.UPI, headers=auth_headers)
        assert response.status_code == 200
        withdrawal = response.json()["withdrawal"]
        assert withdrawal["status"] == "pending"

        response = await client.post("/api/withdrawals/request", json=self.UPI, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "You can only make one withdrawal every 24 hours"}

        response = await client.put(
            f"/api/admin/withdrawal/{withdrawal['id']}",
            json={"status": "approved"},
            headers=admin_auth_headers
        )
        assert response.status_code == 200
        assert response.json()["withdrawal"]["status"] == "approved"

        profile = (await client.get("/api/user/profile", headers=auth_headers)).json()
        assert profile["balance"] == 0.0
        assert profile["total_withdrawn"] == 200.0

    async def test_below_minimum(self, client: AsyncClient, auth_headers):
        response = await client.post(
            "/api/withdrawals/request",
            json={**self.UPI, "amount": 50},
            headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Minimum withdrawal amount is ₹100"}

    async def test_user_transactions_include_pending(
        self, client: AsyncClient, auth_headers, test_user, set_balances
    ):
        await set_balances(test_user, balance=500.0)
        await client.post("/api/withdrawals/request", json=self.UPI, headers=auth_headers)
        await client.post("/api/recharge/request", json={"amount": 300}, headers=auth_headers)

        response = await client.get("/api/user/transactions", headers=auth_headers)

        assert response.status_code == 200
        types = {entry["type"] for entry in response.json()}
        assert types == {"withdrawal_pending", "recharge_pending"}


@pytest.mark.api
class TestReferralAPI:
    """Claiming a referral code after registration."""

    async def test_verify_referral(self, client: AsyncClient, auth_headers, admin_user):
        response = await client.post(
            "/api/referral/verify-referral",
            json={"referral_code": "ADMIN001"},
            headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["referrer"] == {
            "id": admin_user.id,
            "name": "Admin User",
            "username": "admin",
        }

        response = await client.post(
            "/api/referral/verify-referral",
            json={"referral_code": "ADMIN001"},
            headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json() == {"error": "You have already used a referral code"}

    async def test_verify_referral_requires_code(self, client: AsyncClient, auth_headers):
        response = await client.post("/api/referral/verify-referral", json={}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Referral code is required"}
