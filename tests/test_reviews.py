import pytest
from fastapi.testclient import TestClient


@pytest.fixture()
def serum(make_product):
    return make_product("Rose Serum")


def post_review(client, headers, product, rating=5, comment="Lovely texture, absorbs fast."):
    return client.post(
        "/api/v1/reviews",
        json={"product_id": product["id"], "rating": rating, "comment": comment},
        headers=headers,
    )


def product_rating(client, slug):
    data = client.get(f"/api/v1/products/{slug}").json()["data"]
    return data["rating"], data["review_count"]


def test_review_updates_product_rating(client: TestClient, customer_headers, other_customer_headers, serum):
    assert post_review(client, customer_headers, serum, rating=5).status_code == 201
    assert post_review(client, other_customer_headers, serum, rating=2).status_code == 201

    assert product_rating(client, serum["slug"]) == (3.5, 2)


def test_review_change_invalidates_cached_product(client: TestClient, customer_headers, serum, cache_store):
    client.get(f"/api/v1/products/{serum['slug']}")
    assert f"product-by-slug:{serum['slug']}" in cache_store.keys()

    post_review(client, customer_headers, serum, rating=4)

    assert f"product-by-slug:{serum['slug']}" not in cache_store.keys()
    assert product_rating(client, serum["slug"]) == (4.0, 1)


def test_one_review_per_user_per_product(client: TestClient, customer_headers, serum):
    post_review(client, customer_headers, serum)

    response = post_review(client, customer_headers, serum)

    assert response.status_code == 409
    assert response.json()["kind"] == "conflict"


def test_review_comment_is_sanitized_and_validated(client: TestClient, customer_headers, serum):
    too_short = post_review(client, customer_headers, serum, comment="<b>ok</b>")
    assert too_short.status_code == 422

    created = post_review(client, customer_headers, serum, comment="<script>x</script>Really good serum")
    assert created.status_code == 201
    assert "<" not in created.json()["data"]["comment"]


def test_review_requires_active_product(client: TestClient, customer_headers):
    response = client.post(
        "/api/v1/reviews",
        json={"product_id": 9999, "rating": 5, "comment": "Lovely texture, absorbs fast."},
        headers=customer_headers,
    )

    assert response.status_code == 404


def test_only_owner_updates_review(client: TestClient, customer_headers, other_customer_headers, serum):
    review = post_review(client, customer_headers, serum, rating=5).json()["data"]

    forbidden = client.put(f"/api/v1/reviews/{review['id']}", json={"rating": 1}, headers=other_customer_headers)
    assert forbidden.status_code == 403

    updated = client.put(f"/api/v1/reviews/{review['id']}", json={"rating": 3}, headers=customer_headers)
    assert updated.status_code == 200
    assert updated.json()["data"]["rating"] == 3
    assert product_rating(client, serum["slug"]) == (3.0, 1)


def test_admin_can_delete_any_review(
    client: TestClient,
    admin_headers,
    customer_headers,
    other_customer_headers,
    serum,
):
    review = post_review(client, customer_headers, serum).json()["data"]

    assert client.delete(f"/api/v1/reviews/{review['id']}", headers=other_customer_headers).status_code == 403
    assert client.delete(f"/api/v1/reviews/{review['id']}", headers=admin_headers).status_code == 200

    assert product_rating(client, serum["slug"]) == (0.0, 0)
    assert client.delete(f"/api/v1/reviews/{review['id']}", headers=admin_headers).status_code == 404


def test_reviews_are_paginated(client: TestClient, customer_headers, other_customer_headers, serum):
    post_review(client, customer_headers, serum)
    post_review(client, other_customer_headers, serum)

    page = client.get(f"/api/v1/reviews/product/{serum['id']}", params={"limit": 1, "page": 2}).json()["data"]
    assert page["total"] == 2
    assert page["total_pages"] == 2
    assert len(page["reviews"]) == 1

    capped = client.get(f"/api/v1/reviews/product/{serum['id']}", params={"limit": 500}).json()["data"]
    assert capped["limit"] == 50

    assert client.get("/api/v1/reviews/product/9999").status_code == 404


def test_review_ids_are_integers(client: TestClient, customer_headers):
    response = client.put("/api/v1/reviews/not-a-number", json={"rating": 3}, headers=customer_headers)

    assert response.status_code == 422
    assert client.put("/api/v1/reviews/9999", json={"rating": 3}, headers=customer_headers).status_code == 404
