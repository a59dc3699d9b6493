import pytest
from fastapi.testclient import TestClient

VARIANTS = [
    {"size": "30ml", "color": "Pink", "price": 300.0, "stock_quantity": 5},
    {"size": "50ml", "color": "Pink", "price": 500.0, "stock_quantity": 2},
]


@pytest.fixture()
def serum(make_product):
    return make_product("Rose Serum", variants=VARIANTS, discount=20)


def add_item(client, headers, product, variant_index=0, quantity=1):
    return client.post(
        "/api/v1/cart/items",
        json={
            "product_id": product["id"],
            "variant_id": product["variants"][variant_index]["id"],
            "quantity": quantity,
        },
        headers=headers,
    )


def test_cart_requires_authentication(client: TestClient):
    response = client.get("/api/v1/cart")

    assert response.status_code == 401
    assert response.json()["kind"] == "unauthorized"


def test_empty_cart(client: TestClient, customer_headers):
    response = client.get("/api/v1/cart", headers=customer_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {"items": [], "total_items": 0, "total_price": 0.0}


def test_add_item_uses_discounted_variant_price(client: TestClient, customer_headers, serum):
    response = add_item(client, customer_headers, serum, variant_index=0, quantity=2)

    assert response.status_code == 201
    cart = response.json()["data"]
    assert cart["items"][0]["unit_price"] == 240.0
    assert cart["items"][0]["line_total"] == 480.0
    assert cart["total_items"] == 2
    assert cart["total_price"] == 480.0


def test_adding_same_variant_merges_lines(client: TestClient, customer_headers, serum):
    add_item(client, customer_headers, serum, quantity=1)
    cart = add_item(client, customer_headers, serum, quantity=2).json()["data"]

    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3


def test_add_item_respects_stock(client: TestClient, customer_headers, serum):
    add_item(client, customer_headers, serum, variant_index=1, quantity=2)

    response = add_item(client, customer_headers, serum, variant_index=1, quantity=1)

    assert response.status_code == 400
    assert response.json()["errors"][0]["available"] == 2


def test_variant_must_belong_to_product(client: TestClient, customer_headers, serum, make_product):
    other = make_product("Aloe Gel")

    response = client.post(
        "/api/v1/cart/items",
        json={"product_id": serum["id"], "variant_id": other["variants"][0]["id"], "quantity": 1},
        headers=customer_headers,
    )

    assert response.status_code == 404


def test_carts_are_per_user(client: TestClient, customer_headers, other_customer_headers, serum):
    add_item(client, customer_headers, serum)

    other = client.get("/api/v1/cart", headers=other_customer_headers).json()["data"]

    assert other["items"] == []


def test_update_remove_and_clear(client: TestClient, customer_headers, serum):
    add_item(client, customer_headers, serum, variant_index=0)
    add_item(client, customer_headers, serum, variant_index=1)
    first_variant = serum["variants"][0]["id"]
    second_variant = serum["variants"][1]["id"]

    updated = client.put(
        f"/api/v1/cart/items/{first_variant}", json={"quantity": 4}, headers=customer_headers
    ).json()["data"]
    assert updated["total_items"] == 5

    too_many = client.put(f"/api/v1/cart/items/{second_variant}", json={"quantity": 3}, headers=customer_headers)
    assert too_many.status_code == 400

    removed = client.delete(f"/api/v1/cart/items/{first_variant}", headers=customer_headers).json()["data"]
    assert [item["variant_id"] for item in removed["items"]] == [second_variant]

    missing = client.delete(f"/api/v1/cart/items/{first_variant}", headers=customer_headers)
    assert missing.status_code == 404

    cleared = client.delete("/api/v1/cart", headers=customer_headers).json()["data"]
    assert cleared["items"] == []


def test_inactive_product_lines_do_not_count(client: TestClient, admin_headers, customer_headers, serum):
    add_item(client, customer_headers, serum, quantity=2)

    client.put(f"/api/v1/admin/products/{serum['id']}", data={"status": "Inactive"}, headers=admin_headers)
    cart = client.get("/api/v1/cart", headers=customer_headers).json()["data"]

    assert cart["items"][0]["available"] is False
    assert cart["total_items"] == 0
    assert cart["total_price"] == 0.0

    response = add_item(client, customer_headers, serum)
    assert response.status_code == 404
