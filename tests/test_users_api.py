"""Tests for user management and the delete cascade."""

from bson import ObjectId

import database


def new_user(**overrides):
    body = {"email": "new@shop.com", "password": "secret123", "name": "New", "role": "customer"}
    body.update(overrides)
    return body


class TestCreateUser:
    def test_seller_creates_bound_customer(self, login_as, accounts):
        response = login_as("seller@shop.com").post("/api/users", json=new_user())
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["sellerId"] == accounts["seller"]
        assert data["role"] == "customer"
        assert "passwordHash" not in data
        assert "salt" not in data

    def test_seller_cannot_create_sellers(self, login_as, accounts):
        response = login_as("seller@shop.com").post("/api/users", json=new_user(role="seller"))
        assert response.status_code == 403

    def test_admin_creates_seller(self, login_as, accounts):
        response = login_as("admin@shop.com").post("/api/users", json=new_user(role="seller", sellerId="ignored"))
        assert response.status_code == 201
        assert "sellerId" not in response.json()["data"]

    def test_admin_customer_needs_seller(self, login_as, accounts):
        response = login_as("admin@shop.com").post("/api/users", json=new_user())
        assert response.status_code == 400

    def test_admin_customer_with_unknown_seller(self, login_as, accounts):
        response = login_as("admin@shop.com").post("/api/users", json=new_user(sellerId=str(ObjectId())))
        assert response.status_code == 404

    def test_duplicate_email(self, login_as, accounts):
        response = login_as("seller@shop.com").post("/api/users", json=new_user(email="customer@shop.com"))
        assert response.status_code == 400

    def test_customer_cannot_create_users(self, login_as, accounts):
        assert login_as("customer@shop.com").post("/api/users", json=new_user()).status_code == 403

    def test_new_user_can_log_in(self, login_as, accounts):
        login_as("seller@shop.com").post("/api/users", json=new_user())
        assert login_as("new@shop.com").get("/api/auth/session").status_code == 200


class TestListAndUpdateUsers:
    def test_seller_lists_own_customers(self, login_as, accounts):
        data = login_as("seller@shop.com").get("/api/users").json()["data"]
        assert [u["id"] for u in data] == [accounts["customer"]]

    def test_admin_filters_by_role(self, login_as, accounts):
        data = login_as("admin@shop.com").get("/api/users", params={"role": "seller"}).json()["data"]
        assert len(data) == 2

    def test_customer_views_self_only(self, login_as, accounts):
        c = login_as("customer@shop.com")
        assert c.get(f"/api/users/{accounts['customer']}").status_code == 200
        assert c.get(f"/api/users/{accounts['seller']}").status_code == 403

    def test_seller_updates_own_customer(self, login_as, accounts):
        response = login_as("seller@shop.com").put(
            f"/api/users/{accounts['customer']}", json={"businessName": "Corner Deli"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["businessName"] == "Corner Deli"

    def test_seller_cannot_update_foreign_customer(self, login_as, accounts):
        response = login_as("seller@shop.com").put(
            f"/api/users/{accounts['other_customer']}", json={"name": "x"}
        )
        assert response.status_code == 403

    def test_deactivation_ends_session(self, login_as, accounts):
        customer = login_as("customer@shop.com")
        login_as("seller@shop.com").put(f"/api/users/{accounts['customer']}", json={"isActive": False})
        assert customer.get("/api/auth/session").status_code == 401


class TestDeleteUser:
    def seed(self, db, accounts):
        now = database.now_iso()
        db["product"].insert_one({"sellerId": accounts["seller"], "name": "Beef", "createdAt": now})
        db["product"].insert_one({"sellerId": accounts["other_seller"], "name": "Fish", "createdAt": now})
        for customer, seller in (("customer", "seller"), ("other_customer", "other_seller")):
            db["order"].insert_one({"customerId": accounts[customer], "sellerId": accounts[seller],
                                    "status": "pending", "createdAt": now})
            db["transaction"].insert_one({"customerId": accounts[customer], "sellerId": accounts[seller],
                                          "amount": 10, "transactionDate": "2024-05-01"})
        db["conversation"].insert_one({
            "participants": [accounts["seller"], accounts["customer"]], "status": "active", "updatedAt": now,
        })

    def test_seller_cascade(self, login_as, accounts, mongo_db):
        self.seed(mongo_db, accounts)
        response = login_as("admin@shop.com").delete(f"/api/users/{accounts['seller']}")
        assert response.status_code == 200
        assert response.json()["data"] == {"users": 1, "customers": 1, "products": 1, "orders": 1, "transactions": 1}
        assert mongo_db["transaction"].count_documents({"sellerId": accounts["other_seller"]}) == 1
        assert mongo_db["user"].count_documents({"_id": ObjectId(accounts["customer"])}) == 0
        assert mongo_db["product"].count_documents({}) == 1
        assert mongo_db["order"].count_documents({"sellerId": accounts["other_seller"]}) == 1
        assert mongo_db["conversation"].find_one({})["status"] == "archived"

    def test_customer_cascade(self, login_as, accounts, mongo_db):
        self.seed(mongo_db, accounts)
        response = login_as("admin@shop.com").delete(f"/api/users/{accounts['customer']}")
        assert response.json()["data"]["orders"] == 1
        assert response.json()["data"]["transactions"] == 1
        assert mongo_db["order"].count_documents({}) == 1
        assert mongo_db["user"].count_documents({"_id": ObjectId(accounts["seller"])}) == 1

    def test_admin_cannot_delete_self(self, login_as, accounts):
        response = login_as("admin@shop.com").delete(f"/api/users/{accounts['admin']}")
        assert response.status_code == 400

    def test_seller_cannot_delete(self, login_as, accounts):
        response = login_as("seller@shop.com").delete(f"/api/users/{accounts['customer']}")
        assert response.status_code == 403

    def test_missing_user(self, login_as, accounts):
        assert login_as("admin@shop.com").delete(f"/api/users/{ObjectId()}").status_code == 404


class TestCurrentCustomer:
    def test_profile_and_seller_catalogue(self, login_as, accounts, mongo_db):
        now = database.now_iso()
        mongo_db["product"].insert_many([
            {"sellerId": accounts["seller"], "name": "Beef", "isActive": True, "createdAt": now},
            {"sellerId": accounts["seller"], "name": "Retired", "isActive": False, "createdAt": now},
            {"sellerId": accounts["other_seller"], "name": "Fish", "isActive": True, "createdAt": now},
        ])
        response = login_as("customer@shop.com").get("/api/customers/me")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["customer"]["id"] == accounts["customer"]
        assert "passwordHash" not in data["customer"]
        assert [p["name"] for p in data["products"]] == ["Beef"]

    def test_customers_only(self, login_as, accounts):
        assert login_as("seller@shop.com").get("/api/customers/me").status_code == 403
