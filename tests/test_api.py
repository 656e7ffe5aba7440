import base64

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from fakes import InMemoryRegistry, no_sleep
from main import app
from routers.deps import get_admin, get_combination_store, get_registry, get_shop_context
from services.combination_store import CombinationStore
from services.media_upload import MediaUploadPipeline

SHOP = "demo-shop.myshopify.com"
HEADERS = {"X-Shopify-Shop-Domain": SHOP, "X-Shopify-Access-Token": "shpat_test"}
P1, P2, P3 = "gid://shopify/Product/1", "gid://shopify/Product/2", "gid://shopify/Product/3"
PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x00" * 8).decode()


@pytest.fixture
def make_client(admin):
    def _make(registry):
        def _admin(ctx=Depends(get_shop_context)):
            return admin

        def _combinations(shop_admin=Depends(get_admin)):
            return CombinationStore(shop_admin, media=MediaUploadPipeline(shop_admin, sleep=no_sleep))

        app.dependency_overrides[get_admin] = _admin
        app.dependency_overrides[get_registry] = lambda: registry
        app.dependency_overrides[get_combination_store] = _combinations
        return TestClient(app, raise_server_exceptions=False)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client, registry):
    return make_client(registry)


def _bundle_body(title="Summer Box", **overrides):
    body = {
        "title": title,
        "status": "active",
        "discountType": "percentage",
        "discountValue": 10,
        "steps": [
            {
                "title": "Pick a top",
                "minSelections": 1,
                "maxSelections": 2,
                "products": [{"id": P1}, {"id": P2}],
            },
            {"title": "Add a hat", "minSelections": 0, "products": [{"id": P3}]},
        ],
    }
    body.update(overrides)
    return body


def _create(client, **overrides):
    response = client.post("/api/bundles", json=_bundle_body(**overrides), headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()["bundle"]


def _numeric(gid):
    return gid.rsplit("/", 1)[-1]


def test_health_endpoints_do_not_need_credentials(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_missing_credentials_is_unauthorized(client):
    response = client.get("/api/bundles")
    assert response.status_code == 401
    assert response.json() == {"error": True, "message": "Missing shop credentials", "code": "UNAUTHORIZED"}


def test_create_bundle_syncs_cart_transform(client, admin):
    response = client.post("/api/bundles", json=_bundle_body(), headers=HEADERS)

    assert response.status_code == 201
    payload = response.json()
    bundle = payload["bundle"]
    assert bundle["title"] == "Summer Box"
    assert bundle["handle"] == "summer-box"
    assert [step["position"] for step in bundle["steps"]] == [1, 2]
    assert all(step["id"].startswith("step_") for step in bundle["steps"])
    assert bundle["layoutSettings"]["gridSettings"]["imagePosition"] == "top"
    assert payload["sync"] == {"success": True, "error": None, "bundleCount": 1}
    assert admin.snapshot_for("gid://shopify/CartTransform/1") is not None


def test_mutation_succeeds_when_sync_is_not_configured(make_client):
    client = make_client(InMemoryRegistry())
    response = client.post("/api/bundles", json=_bundle_body(), headers=HEADERS)

    assert response.status_code == 201
    assert response.json()["sync"]["success"] is False
    assert response.json()["sync"]["error"] == "Cart transform not configured"


def test_create_validation_errors(client):
    response = client.post("/api/bundles", json=_bundle_body(discountValue=150), headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert "Percentage discount cannot exceed 100" in response.json()["message"]

    response = client.post("/api/bundles", json=_bundle_body(title="   "), headers=HEADERS)
    assert response.status_code == 400

    response = client.post("/api/bundles", json=_bundle_body(steps=[]), headers=HEADERS)
    assert response.status_code == 400

    bad_step = {"title": "Bad", "minSelections": 3, "maxSelections": 1}
    response = client.post("/api/bundles", json=_bundle_body(steps=[bad_step]), headers=HEADERS)
    assert response.status_code == 400
    assert "max selections must be >= min selections" in response.json()["message"]


def test_layout_settings_must_match_layout_type(client):
    body = _bundle_body(layoutType="grid", layoutSettings={"sliderSettings": {"slidesToScroll": 1}})
    response = client.post("/api/bundles", json=body, headers=HEADERS)
    assert response.status_code == 400
    assert "sliderSettings is not allowed" in response.json()["message"]


def test_layout_breakpoints_must_be_an_object(client):
    body = _bundle_body(layoutType="grid", layoutSettings={"gridSettings": {"productsPerRow": 3, "imagePosition": "top"}})
    response = client.post("/api/bundles", json=body, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert "Grid products per row must be an object" in response.json()["message"]


def test_list_bundles_paginates(client):
    for i in range(1, 4):
        _create(client, title=f"Box {i}")
    _create(client, title="Draft Box", status="draft")

    response = client.get("/api/bundles", params={"page": 1, "limit": 2, "status": "active"}, headers=HEADERS)
    payload = response.json()
    assert [b["title"] for b in payload["bundles"]] == ["Box 1", "Box 2"]
    assert payload["pagination"] == {"page": 1, "limit": 2, "total": 3, "hasNext": True}


def test_list_limit_is_capped(client):
    response = client.get("/api/bundles", params={"limit": 101}, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "LIMIT_EXCEEDED"


def test_get_update_delete_by_numeric_id(client):
    bundle = _create(client)
    bundle_id = _numeric(bundle["id"])

    assert client.get(f"/api/bundles/{bundle_id}", headers=HEADERS).json()["bundle"]["id"] == bundle["id"]

    response = client.put(f"/api/bundles/{bundle_id}", json={"status": "inactive"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["bundle"]["status"] == "inactive"
    assert response.json()["bundle"]["title"] == "Summer Box"
    assert response.json()["sync"]["bundleCount"] == 0

    response = client.delete(f"/api/bundles/{bundle_id}", headers=HEADERS)
    assert response.json() == {"success": True, "sync": {"success": True, "error": None, "bundleCount": 0}}

    response = client.get(f"/api/bundles/{bundle_id}", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["code"] == "BUNDLE_NOT_FOUND"
    assert client.delete(f"/api/bundles/{bundle_id}", headers=HEADERS).status_code == 404


def test_update_rejects_percentage_over_100_from_value_alone(client):
    bundle = _create(client)
    bundle_id = _numeric(bundle["id"])

    response = client.put(f"/api/bundles/{bundle_id}", json={"discountValue": 150}, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert response.json()["message"] == "Percentage discount cannot exceed 100"

    stored = client.get(f"/api/bundles/{bundle_id}", headers=HEADERS).json()["bundle"]
    assert stored["discountValue"] == 10


def test_update_rejects_switch_to_percentage_over_100(client):
    bundle = _create(client, discountType="fixed", discountValue=250)
    bundle_id = _numeric(bundle["id"])

    response = client.put(f"/api/bundles/{bundle_id}", json={"discountType": "percentage"}, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    stored = client.get(f"/api/bundles/{bundle_id}", headers=HEADERS).json()["bundle"]
    assert stored["discountType"] == "fixed"

    response = client.put(
        f"/api/bundles/{bundle_id}", json={"discountType": "percentage", "discountValue": 25}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json()["bundle"]["discountValue"] == 25


def test_duplicate_bundle(client):
    bundle = _create(client)
    response = client.post(
        f"/api/bundles/{_numeric(bundle['id'])}/duplicate", json={"title": "Summer Box Copy"}, headers=HEADERS
    )
    assert response.status_code == 201
    copy = response.json()["bundle"]
    assert copy["status"] == "draft"
    assert copy["handle"] == "summer-box-copy"
    assert copy["steps"] == bundle["steps"]


def test_bulk_delete_reports_each_item(client):
    first = _create(client, title="One")
    second = _create(client, title="Two")

    response = client.post(
        "/api/bundles/bulk-delete",
        json={"bundleIds": [_numeric(first["id"]), "999999", _numeric(second["id"])]},
        headers=HEADERS,
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is False
    assert [item["success"] for item in payload["perItem"]] == [True, False, True]
    assert payload["summary"] == {"total": 3, "succeeded": 2, "failed": 1}
    assert payload["sync"]["bundleCount"] == 0


def test_bulk_limit(client):
    response = client.post(
        "/api/bundles/bulk-status",
        json={"bundleIds": [str(i) for i in range(101)], "status": "active"},
        headers=HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "LIMIT_EXCEEDED"


def test_bulk_status(client):
    bundle = _create(client)
    response = client.post(
        "/api/bundles/bulk-status",
        json={"bundleIds": [_numeric(bundle["id"])], "status": "draft"},
        headers=HEADERS,
    )
    assert response.json()["success"] is True
    assert response.json()["sync"]["bundleCount"] == 0


def test_step_routes(client):
    bundle = _create(client)
    bundle_id = _numeric(bundle["id"])
    first_id, second_id = (step["id"] for step in bundle["steps"])

    response = client.post(f"/api/bundles/{bundle_id}/steps", json={"title": "Socks"}, headers=HEADERS)
    assert response.status_code == 201
    new_step = response.json()["step"]
    assert new_step["position"] == 3

    response = client.put(
        f"/api/bundles/{bundle_id}/steps/{second_id}", json={"maxSelections": None, "title": "Hats"}, headers=HEADERS
    )
    assert response.json()["step"]["title"] == "Hats"

    response = client.post(
        f"/api/bundles/{bundle_id}/steps/reorder",
        json={"stepOrder": [
            {"stepId": new_step["id"], "position": 1},
            {"stepId": first_id, "position": 2},
            {"stepId": second_id, "position": 3},
        ]},
        headers=HEADERS,
    )
    assert [step["id"] for step in response.json()["steps"]] == [new_step["id"], first_id, second_id]

    response = client.delete(f"/api/bundles/{bundle_id}/steps/step_missing", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["message"] == "Step not found"


@pytest.mark.parametrize("changes", [{"title": None}, {"required": None}, {"minSelections": None}])
def test_step_update_with_null_for_required_field(client, changes):
    bundle = _create(client)
    bundle_id = _numeric(bundle["id"])
    step_id = bundle["steps"][0]["id"]

    response = client.put(f"/api/bundles/{bundle_id}/steps/{step_id}", json=changes, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    stored = client.get(f"/api/bundles/{bundle_id}", headers=HEADERS).json()["bundle"]
    assert stored["steps"][0] == bundle["steps"][0]


def test_combination_routes(client, admin):
    admin.add_product(P1, "Shirt", "20.00")
    admin.add_product(P2, "Pants", "30.00")
    bundle = _create(client)
    bundle_id = _numeric(bundle["id"])

    response = client.post(
        f"/api/bundles/{bundle_id}/combinations",
        json={"productIds": [P1, P2], "imageBase64": f"data:image/png;base64,{PNG_B64}"},
        headers=HEADERS,
    )
    assert response.status_code == 201, response.text
    combination = response.json()["combination"]
    assert combination["imageUrl"].startswith("https://cdn.example.com/")

    response = client.post(
        f"/api/bundles/{bundle_id}/combinations",
        json={"productIds": [P2, P1], "imageBase64": PNG_B64},
        headers=HEADERS,
    )
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_BUNDLE"

    listing = client.get(f"/api/bundles/{bundle_id}/combinations", headers=HEADERS).json()
    assert [c["id"] for c in listing["combinations"]] == [combination["id"]]
    assert [p["title"] for p in listing["combinations"][0]["products"]] == ["Shirt", "Pants"]
    assert {p["id"] for p in listing["availableProducts"]} == {P1, P2, P3}

    response = client.request(
        "DELETE",
        f"/api/bundles/{bundle_id}/combinations",
        json={"combinationIds": [_numeric(combination["id"])]},
        headers=HEADERS,
    )
    assert response.json()["summary"] == {"total": 1, "deleted": 1, "failed": 0}
    stored = client.get(f"/api/bundles/{bundle_id}", headers=HEADERS).json()["bundle"]
    assert stored["combinationImages"] == []


def test_combination_requires_valid_image(client):
    bundle = _create(client)
    response = client.post(
        f"/api/bundles/{_numeric(bundle['id'])}/combinations",
        json={"productIds": [P1, P2], "imageBase64": "not base64!!"},
        headers=HEADERS,
    )
    assert response.status_code == 400


def test_calculate_price(client, admin):
    admin.add_product(P1, "Shirt", "20.00")
    admin.add_product(P3, "Hat", "15.00")
    bundle = _create(client)
    top_step, hat_step = (step["id"] for step in bundle["steps"])

    response = client.post(
        "/api/bundles/calculate-price",
        json={
            "bundleId": _numeric(bundle["id"]),
            "selectedProducts": [
                {"stepId": top_step, "selections": [{"productId": P1}]},
                {"stepId": hat_step, "selections": [{"productId": P3}]},
            ],
        },
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json() == {
        "originalPrice": 35.0,
        "discountAmount": 3.5,
        "finalPrice": 31.5,
        "savings": {"amount": 3.5, "percentage": 10.0},
    }


def test_storefront_bundle(client, admin):
    admin.add_product(P1, "Shirt", "20.00")
    admin.add_product(P2, "Pants", "30.00")
    admin.add_product(P3, "Hat", "15.00")
    _create(client)
    _create(client, title="Hidden Box", status="draft")

    response = client.get("/api/bundles/storefront/summer-box", headers=HEADERS)
    assert response.status_code == 200
    bundle = response.json()["bundle"]
    assert [p["title"] for p in bundle["steps"][0]["products"]] == ["Shirt", "Pants"]
    assert bundle["steps"][0]["products"][0]["priceRange"] == {"min": "20.00", "max": "20.00"}
    assert bundle["exampleSavings"] == {"amount": "2.00", "percentage": 10}
    assert bundle["combinations"] == []

    assert client.get("/api/bundles/storefront/hidden-box", headers=HEADERS).status_code == 404


def test_setup_cart_transform(make_client, admin, monkeypatch):
    monkeypatch.setattr("services.cart_transform_sync.CART_TRANSFORM_FUNCTION_ID", "fn-bundles")
    registry = InMemoryRegistry()
    client = make_client(registry)

    response = client.post("/api/setup/cart-transform", headers=HEADERS)
    assert response.status_code == 200
    payload = response.json()
    assert payload["functionId"] == "fn-bundles"
    assert payload["sync"]["success"] is True
    assert admin.snapshot_for(payload["cartTransformId"]) == '{"bundles":[]}'

    client.post("/api/setup/cart-transform", headers=HEADERS)
    assert admin.operation_count("CreateCartTransform") == 1


def test_setup_without_function_id(client, monkeypatch):
    monkeypatch.setattr("services.cart_transform_sync.CART_TRANSFORM_FUNCTION_ID", None)
    response = client.post("/api/setup/cart-transform", headers=HEADERS)
    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"


def test_products_by_ids_keeps_requested_order(client, admin):
    admin.add_product(P1, "Shirt", "20.00", image="https://cdn.example.com/shirt.png")
    admin.add_product(P2, "Pants", "30.00", vendor="Denim Co", product_type="Bottoms")

    response = client.get("/api/products/by-ids", params={"ids": f"2,{P1},gid://shopify/Product/404"}, headers=HEADERS)
    assert response.status_code == 200
    products = response.json()["products"]
    assert [p["id"] for p in products] == [P2, P1]
    assert products[0] == {
        "id": P2,
        "title": "Pants",
        "handle": "pants",
        "featuredImage": None,
        "vendor": "Denim Co",
        "productType": "Bottoms",
        "availableForSale": True,
        "priceRange": {"min": "30.00", "max": "30.00"},
    }
    assert products[1]["featuredImage"] == "https://cdn.example.com/shirt.png"


def test_products_by_ids_without_ids(client, admin):
    response = client.get("/api/products/by-ids", headers=HEADERS)
    assert response.json() == {"products": []}
    assert admin.operation_count("GetProducts") == 0


def test_product_search_matches_title_vendor_and_type(client, admin):
    admin.add_product(P1, "Classic Sunglasses", "29.99", vendor="Summer Co.", product_type="Eyewear")
    admin.add_product(P2, "Beach Hat", "19.99", vendor="Beach Gear Ltd.", product_type="Hats")
    admin.add_product(P3, "Winter Coat", "149.99", vendor="Winter Wear Co.", product_type="Coats")

    def titles(**params):
        response = client.get("/api/products/search", params=params, headers=HEADERS)
        assert response.status_code == 200
        return [p["title"] for p in response.json()["products"]]

    assert titles(query="sunglasses") == ["Classic Sunglasses"]
    assert titles(query="beach gear") == ["Beach Hat"]
    assert titles(query="COATS") == ["Winter Coat"]
    assert titles(query="nothing here") == []
    assert titles() == ["Classic Sunglasses", "Beach Hat", "Winter Coat"]
    assert titles(limit=2) == ["Classic Sunglasses", "Beach Hat"]


def test_product_search_limit_bounds(client):
    response = client.get("/api/products/search", params={"limit": 251}, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
