import os
import tempfile
import unittest
from decimal import Decimal

_DB_DIR = tempfile.TemporaryDirectory()
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR.name, 'api.db')}"

from fastapi.testclient import TestClient  # noqa: E402

from planbudget.main import app, engine  # noqa: E402
from planbudget.schema import metadata  # noqa: E402


def tearDownModule() -> None:
    engine.dispose()
    _DB_DIR.cleanup()


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        metadata.drop_all(engine)
        self.client_context = TestClient(app)
        self.client = self.client_context.__enter__()
        response = self.client.post(
            "/auth/signup", json={"email": "Owner@Example.com", "password": "s3cret"}
        )
        self.assertEqual(response.status_code, 200)
        self.headers = {"x-user-id": str(response.json()["id"])}

    def tearDown(self) -> None:
        self.client_context.__exit__(None, None, None)

    def test_signup_and_login(self) -> None:
        duplicate = self.client.post(
            "/auth/signup", json={"email": "owner@example.com", "password": "other"}
        )
        login = self.client.post(
            "/auth/login", json={"email": "owner@example.com", "password": "s3cret"}
        )
        bad_login = self.client.post(
            "/auth/login", json={"email": "owner@example.com", "password": "wrong"}
        )

        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.json()["email"], "owner@example.com")
        self.assertEqual(bad_login.status_code, 401)

    def test_requests_need_a_known_user(self) -> None:
        self.assertEqual(self.client.get("/users/me/settings").status_code, 401)
        self.assertEqual(
            self.client.get("/users/me/settings", headers={"x-user-id": "999"}).status_code, 404
        )

    def test_settings_validate_month_start_day(self) -> None:
        rejected = self.client.put(
            "/users/me/settings", json={"month_start_day": 29}, headers=self.headers
        )
        accepted = self.client.put(
            "/users/me/settings",
            json={"month_start_day": 25, "personal_budget": "500000"},
            headers=self.headers,
        )
        window = self.client.get(
            "/periods/window", params={"year": 2024, "month": 12}, headers=self.headers
        )
        current = self.client.get(
            "/periods/current", params={"as_of": "2024-03-10"}, headers=self.headers
        )

        self.assertEqual(rejected.status_code, 400)
        self.assertEqual(accepted.status_code, 200)
        self.assertEqual(accepted.json()["month_start_day"], 25)
        self.assertEqual(window.json()["start_date"], "2024-12-25")
        self.assertEqual(window.json()["end_date"], "2025-01-24")
        self.assertEqual(window.json()["period_key"], "2024-12-25")
        self.assertEqual(current.json()["period_key"], "2024-2-25")

    def test_signup_seeds_default_categories(self) -> None:
        response = self.client.get("/categories", headers=self.headers)

        types = {item["type"] for item in response.json()}
        self.assertEqual(types, {"income", "expense", "fixed"})

    def test_generation_runs_once_per_period(self) -> None:
        created = self.client.post(
            "/fixed-items",
            json={"name": "Rent", "amount": "500000", "day": 31},
            headers=self.headers,
        )
        self.assertEqual(created.status_code, 200)

        first = self.client.post(
            "/generation/run", params={"as_of": "2030-02-10"}, headers=self.headers
        )
        second = self.client.post(
            "/generation/run", params={"as_of": "2030-02-20"}, headers=self.headers
        )
        listed = self.client.get(
            "/transactions", params={"year": 2030, "month": 2}, headers=self.headers
        )

        self.assertEqual(first.json()["period_key"], "2030-2-1")
        self.assertEqual(first.json()["fixed_generated"], 1)
        self.assertEqual(first.json()["fixed_failed"], 0)
        self.assertFalse(first.json()["fixed_short_circuited"])
        self.assertTrue(second.json()["fixed_short_circuited"])
        self.assertTrue(second.json()["installment_short_circuited"])
        self.assertEqual(second.json()["fixed_generated"], 0)
        self.assertEqual(second.json()["fixed_skipped"], 0)
        [occurrence] = listed.json()
        self.assertEqual(occurrence["date"], "2030-02-28")
        self.assertEqual(occurrence["kind"], "fixed_occurrence")
        self.assertFalse(occurrence["include_in_living_expense"])

    def test_installment_lifecycle(self) -> None:
        created = self.client.post(
            "/transactions",
            json={
                "title": "Laptop",
                "amount": "120000",
                "date": "2030-01-15",
                "type": "expense",
                "is_installment": True,
                "total_term": 12,
            },
            headers=self.headers,
        )
        self.assertEqual(created.status_code, 200)
        master = created.json()
        self.assertEqual(master["kind"], "installment_master")
        self.assertEqual(master["current_term"], 1)
        self.assertEqual(master["installment_day"], 15)

        run = self.client.post(
            "/generation/run", params={"as_of": "2030-03-20"}, headers=self.headers
        )
        listed = self.client.get(
            "/transactions", params={"year": 2030, "month": 3}, headers=self.headers
        )
        schedule = self.client.get(
            "/installments/schedule", params={"year": 2030, "month": 3}, headers=self.headers
        )

        self.assertEqual(run.json()["installment_generated"], 1)
        [occurrence] = listed.json()
        self.assertEqual(occurrence["installment_id"], master["id"])
        self.assertEqual(occurrence["current_term"], 3)
        self.assertEqual(Decimal(occurrence["amount"]), Decimal("10000"))
        self.assertEqual(Decimal(schedule.json()["monthly_burden"]), Decimal("10000"))
        self.assertEqual(
            [(entry["term"], entry["date"]) for entry in schedule.json()["entries"]],
            [(3, "2030-03-15")],
        )

        deleted = self.client.delete(f"/transactions/{master['id']}", headers=self.headers)

        self.assertEqual(deleted.json(), {"status": "deleted", "removed_occurrences": 1})
        after = self.client.get(
            "/transactions", params={"year": 2030, "month": 3}, headers=self.headers
        )
        self.assertEqual(after.json(), [])

    def test_installment_requires_expense(self) -> None:
        response = self.client.post(
            "/transactions",
            json={
                "title": "Bonus",
                "amount": "100",
                "date": "2030-01-15",
                "type": "income",
                "is_installment": True,
                "total_term": 3,
            },
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)

    def test_budget_summary(self) -> None:
        self.client.put(
            "/users/me/settings", json={"personal_budget": "500000"}, headers=self.headers
        )
        self.client.post(
            "/fixed-items",
            json={"name": "Phone", "amount": "12000", "day": 3},
            headers=self.headers,
        )
        self.client.post(
            "/transactions",
            json={"title": "Lunch", "amount": "8000", "date": "2030-03-04", "type": "expense"},
            headers=self.headers,
        )
        self.client.post(
            "/generation/run", params={"as_of": "2030-03-10"}, headers=self.headers
        )

        response = self.client.get(
            "/budget/summary", params={"year": 2030, "month": 3}, headers=self.headers
        )

        body = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(body["total_expense"]), Decimal("20000"))
        self.assertEqual(Decimal(body["living_expense"]), Decimal("8000"))
        self.assertEqual(Decimal(body["living_budget"]), Decimal("488000"))
        self.assertEqual(Decimal(body["remaining"]), Decimal("480000"))

    def test_card_billing(self) -> None:
        card = self.client.post(
            "/assets",
            json={"name": "Visa", "type": "card", "settlement_day": 15, "billing_day": 20},
            headers=self.headers,
        ).json()
        self.client.post(
            "/transactions",
            json={
                "title": "Shoes",
                "amount": "50000",
                "date": "2030-02-20",
                "type": "expense",
                "asset_id": card["id"],
            },
            headers=self.headers,
        )

        response = self.client.get(
            f"/assets/{card['id']}/billing", params={"as_of": "2030-03-10"}, headers=self.headers
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["current_billing"]), Decimal("50000"))
        self.assertEqual(Decimal(response.json()["next_billing"]), Decimal("0"))
        self.assertEqual(response.json()["billing_start"], "2030-02-15")


    def test_asset_in_use_cannot_be_deleted(self) -> None:
        def create_asset(name: str) -> int:
            return self.client.post(
                "/assets", json={"name": name, "type": "bank"}, headers=self.headers
            ).json()["id"]

        paying = create_asset("Salary account")
        default = create_asset("Wallet")
        unused = create_asset("Savings")
        self.client.post(
            "/fixed-items",
            json={
                "name": "Gym",
                "amount": "30000",
                "day": 5,
                "asset_id": paying,
                "is_active": False,
            },
            headers=self.headers,
        )
        self.client.put(
            "/users/me/settings", json={"default_asset_id": default}, headers=self.headers
        )

        by_fixed_item = self.client.delete(f"/assets/{paying}", headers=self.headers)
        by_settings = self.client.delete(f"/assets/{default}", headers=self.headers)
        free = self.client.delete(f"/assets/{unused}", headers=self.headers)

        self.assertEqual(by_fixed_item.status_code, 409)
        self.assertEqual(by_settings.status_code, 409)
        self.assertEqual(free.status_code, 200)
        remaining = self.client.get("/assets", headers=self.headers).json()
        self.assertEqual({item["id"] for item in remaining}, {paying, default})


if __name__ == "__main__":
    unittest.main()
