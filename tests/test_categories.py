from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.models.category import Category, CategoryType
from app.models.product import Product


def image_files(count: int):
    return [("images", (f"image-{idx}.png", b"png-bytes", "image/png")) for idx in range(count)]


def test_recreated_category_gets_next_free_slug(client: TestClient, admin_headers, make_category):
    first = make_category("Hair Care")
    assert first["slug"] == "hair-care"

    response = client.delete(f"/api/v1/admin/categories/{first['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["data"]["hard_delete"] is False

    second = make_category("Hair Care")
    assert second["slug"] == "hair-care-1"


def test_live_category_names_are_unique(make_category):
    make_category("Skin Care")

    body = make_category("  skin   care ", expect=409)

    assert body["kind"] == "conflict"


def test_subcategory_requires_a_main_parent(make_category):
    main = make_category("Hair Care")
    sub = make_category("Shampoos", type="Sub", parent_id=main["id"])
    assert sub["parent_id"] == main["id"]

    assert make_category("Orphan", type="Sub", expect=400)["kind"] == "validation_error"
    assert make_category("Nested", type="Sub", parent_id=sub["id"], expect=400)["kind"] == "validation_error"
    assert make_category("Ghost Child", type="Sub", parent_id=9999, expect=404)["kind"] == "not_found"


def test_category_needs_exactly_two_images(make_category, media):
    body = make_category("Bath", images=1, expect=400)

    assert body["kind"] == "validation_error"
    assert media.uploaded == []


def test_failed_upload_removes_already_uploaded_images(make_category, media):
    media.fail_on_upload = 2

    body = make_category("Bath", expect=502)

    assert body["kind"] == "media_upload_failed"
    assert len(media.uploaded) == 1
    assert media.deleted == media.uploaded


def test_main_categories_are_cached_until_a_category_changes(client: TestClient, make_category, cache_store):
    make_category("Hair Care", display_order=2)
    make_category("Skin Care", display_order=1)

    first = client.get("/api/v1/categories")
    second = client.get("/api/v1/categories")

    assert first.json()["meta"]["from_cache"] is False
    assert second.json()["meta"]["from_cache"] is True
    assert first.json()["data"] == second.json()["data"]
    assert [c["name"] for c in second.json()["data"]] == ["Skin Care", "Hair Care"]
    assert "categories-main" in cache_store.keys()

    make_category("Body Care", display_order=3)

    third = client.get("/api/v1/categories")
    assert third.json()["meta"]["from_cache"] is False
    assert [c["name"] for c in third.json()["data"]] == ["Skin Care", "Hair Care", "Body Care"]


def test_soft_delete_cascades_and_detaches_products(
    client: TestClient,
    db_session: Session,
    admin_headers,
    make_category,
    make_product,
    cache_store,
):
    main = make_category("Hair Care")
    sub = make_category("Shampoos", type="Sub", parent_id=main["id"])
    direct = make_product("Argan Oil", category_id=main["id"])
    nested = make_product("Herbal Shampoo", category_id=main["id"], subcategory_id=sub["id"])

    assert [c["id"] for c in client.get("/api/v1/categories").json()["data"]] == [main["id"]]
    client.get(f"/api/v1/products/{nested['slug']}")
    assert f"product-by-slug:{nested['slug']}" in cache_store.keys()

    response = client.delete(f"/api/v1/admin/categories/{main['id']}", headers=admin_headers)
    assert response.status_code == 200
    result = response.json()["data"]
    assert sorted(result["deleted_categories"]) == sorted([main["id"], sub["id"]])
    assert result["detached_products"] == 2

    db_session.expire_all()
    categories = {c.id: c for c in db_session.query(Category).all()}
    assert categories[main["id"]].is_deleted is True
    assert categories[sub["id"]].is_deleted is True

    products = {p.id: p for p in db_session.query(Product).all()}
    assert products[direct["id"]].category_id is None
    assert products[nested["id"]].category_id is None
    assert products[nested["id"]].subcategory_id is None

    assert "categories-main" not in cache_store.keys()
    assert f"product-by-slug:{nested['slug']}" not in cache_store.keys()
    listed = client.get("/api/v1/categories").json()
    assert listed["meta"]["from_cache"] is False
    assert all(c["id"] != main["id"] for c in listed["data"])

    detail = client.get(f"/api/v1/products/{nested['slug']}").json()["data"]
    assert detail["category"] is None
    assert detail["subcategory"] is None


def test_deleted_category_is_not_found(client: TestClient, admin_headers, make_category):
    category = make_category("Hair Care")
    client.delete(f"/api/v1/admin/categories/{category['id']}", headers=admin_headers)

    assert client.get(f"/api/v1/categories/{category['id']}").status_code == 404
    again = client.delete(f"/api/v1/admin/categories/{category['id']}", headers=admin_headers)
    assert again.status_code == 404


def test_restore_brings_back_the_tree(client: TestClient, admin_headers, make_category):
    main = make_category("Hair Care")
    make_category("Shampoos", type="Sub", parent_id=main["id"])
    client.delete(f"/api/v1/admin/categories/{main['id']}", headers=admin_headers)

    response = client.post(f"/api/v1/admin/categories/{main['id']}/restore", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["data"]["is_deleted"] is False
    subs = client.get(f"/api/v1/categories/{main['id']}/subcategories").json()["data"]
    assert [s["name"] for s in subs] == ["Shampoos"]

    not_deleted = client.post(f"/api/v1/admin/categories/{main['id']}/restore", headers=admin_headers)
    assert not_deleted.status_code == 400


def test_restore_refuses_a_name_reused_meanwhile(client: TestClient, admin_headers, make_category):
    old = make_category("Hair Care")
    client.delete(f"/api/v1/admin/categories/{old['id']}", headers=admin_headers)
    make_category("Hair Care")

    response = client.post(f"/api/v1/admin/categories/{old['id']}/restore", headers=admin_headers)

    assert response.status_code == 409


def test_category_cannot_be_its_own_parent(client: TestClient, admin_headers, make_category):
    main = make_category("Hair Care")

    response = client.put(
        f"/api/v1/admin/categories/{main['id']}",
        data={"type": "Sub", "parent_id": str(main["id"])},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "validation_error"


def test_deleted_children_block_demoting_their_parent(client: TestClient, admin_headers, make_category):
    hair = make_category("Hair Care")
    skin = make_category("Skin Care")
    shampoos = make_category("Shampoos", type="Sub", parent_id=hair["id"])
    client.delete(f"/api/v1/admin/categories/{shampoos['id']}", headers=admin_headers)

    response = client.put(
        f"/api/v1/admin/categories/{hair['id']}",
        data={"type": "Sub", "parent_id": str(skin["id"])},
        headers=admin_headers,
    )

    assert response.status_code == 400
    restored = client.post(f"/api/v1/admin/categories/{shampoos['id']}/restore", headers=admin_headers)
    assert restored.status_code == 200


def test_restore_requires_a_main_parent(
    client: TestClient,
    db_session: Session,
    admin_headers,
    make_category,
):
    hair = make_category("Hair Care")
    skin = make_category("Skin Care")
    shampoos = make_category("Shampoos", type="Sub", parent_id=hair["id"])
    client.delete(f"/api/v1/admin/categories/{shampoos['id']}", headers=admin_headers)
    parent = db_session.query(Category).filter(Category.id == hair["id"]).one()
    parent.type = CategoryType.SUB
    parent.parent_id = skin["id"]
    db_session.commit()

    response = client.post(f"/api/v1/admin/categories/{shampoos['id']}/restore", headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["kind"] == "validation_error"
    db_session.expire_all()
    assert db_session.query(Category).filter(Category.id == shampoos["id"]).one().is_deleted is True


def test_hard_delete_removes_rows_and_media(
    client: TestClient,
    db_session: Session,
    admin_headers,
    make_category,
    media,
):
    main = make_category("Hair Care")
    sub = make_category("Shampoos", type="Sub", parent_id=main["id"])

    response = client.delete(
        f"/api/v1/admin/categories/{main['id']}",
        params={"hard_delete": "true"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    db_session.expire_all()
    assert db_session.query(Category).count() == 0
    assert sorted(media.deleted) == sorted(main["images"] + sub["images"])


def test_update_renames_and_replaces_images(client: TestClient, admin_headers, make_category, media):
    category = make_category("Hair Care")

    response = client.put(
        f"/api/v1/admin/categories/{category['id']}",
        data={"name": "Hair & Scalp", "display_order": "4"},
        files=image_files(2),
        headers=admin_headers,
    )

    assert response.status_code == 200
    updated = response.json()["data"]
    assert updated["name"] == "Hair & Scalp"
    assert updated["slug"] != "hair-care"
    assert updated["display_order"] == 4
    assert len(updated["images"]) == 2
    assert sorted(media.deleted) == sorted(category["images"])


def test_category_details_and_products(client: TestClient, make_category, make_product):
    main = make_category("Hair Care")
    sub = make_category("Shampoos", type="Sub", parent_id=main["id"])
    make_product("Argan Oil", category_id=main["id"])
    make_product("Herbal Shampoo", category_id=main["id"], subcategory_id=sub["id"])

    details = client.get(f"/api/v1/categories/{main['id']}/details").json()
    assert details["meta"]["from_cache"] is False
    assert details["data"]["category"]["id"] == main["id"]
    assert [s["id"] for s in details["data"]["subcategories"]] == [sub["id"]]
    assert {p["name"] for p in details["data"]["products"]} == {"Argan Oil", "Herbal Shampoo"}

    products = client.get(f"/api/v1/categories/{sub['id']}/products").json()
    assert [p["name"] for p in products["data"]] == ["Herbal Shampoo"]


def test_category_without_products_is_not_found(client: TestClient, make_category):
    category = make_category("Hair Care")

    response = client.get(f"/api/v1/categories/{category['id']}/products")

    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


def test_catalog_menu_groups_products_under_main_categories(client: TestClient, make_category, make_product):
    main = make_category("Hair Care")
    make_category("Shampoos", type="Sub", parent_id=main["id"])
    make_product("Argan Oil", category_id=main["id"])

    menu = client.get("/api/v1/categories/menu").json()
    entry = next(item for item in menu["data"] if item["category"]["id"] == main["id"])

    assert [s["name"] for s in entry["subcategories"]] == ["Shampoos"]
    assert [p["name"] for p in entry["products"]] == ["Argan Oil"]
    assert client.get("/api/v1/categories/menu").json()["meta"]["from_cache"] is True


def test_admin_listing_includes_deleted_categories(client: TestClient, admin_headers, customer_headers, make_category):
    category = make_category("Hair Care")
    client.delete(f"/api/v1/admin/categories/{category['id']}", headers=admin_headers)

    assert client.get("/api/v1/admin/categories", headers=customer_headers).status_code == 403
    listed = client.get("/api/v1/admin/categories", headers=admin_headers).json()["data"]
    assert [c["is_deleted"] for c in listed] == [True]
