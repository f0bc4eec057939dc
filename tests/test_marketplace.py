"""Product listings, bidding rules and live bid events"""
from datetime import timedelta

from core.models import utcnow


def test_create_product_defaults(client, farmer, product):
    assert product["status"] == "active"
    assert product["currentBid"] is None
    assert product["price"] == 100
    assert product["userId"] == client.get("/api/user", headers=farmer).json()["user"]["id"]
    assert "biddingEndTime" in product

    listed = client.get("/api/products").json()
    assert [p["id"] for p in listed] == [product["id"]]


def test_create_product_requires_login(client):
    response = client.post("/api/products", json={"title": "Rice", "description": "Bags", "price": 10})
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_create_product_rejects_past_end_time(client, farmer):
    past = (utcnow() - timedelta(hours=1)).isoformat()
    response = client.post("/api/products", headers=farmer, json={
        "title": "Rice",
        "description": "Bags",
        "price": 10,
        "biddingEndTime": past,
    })
    assert response.status_code == 400


def test_create_product_rejects_non_positive_price(client, farmer):
    response = client.post("/api/products", headers=farmer, json={"title": "Rice", "description": "Bags", "price": 0})
    assert response.status_code == 400


def test_get_missing_product(client):
    assert client.get("/api/products/999").status_code == 404


def test_bid_raises_current_bid(client, buyer, product):
    response = client.post(f"/api/products/{product['id']}/bid", headers=buyer, json={"amount": 150})
    assert response.status_code == 201
    assert response.json()["amount"] == 150

    updated = client.get(f"/api/products/{product['id']}").json()
    assert updated["currentBid"] == 150


def test_bid_must_exceed_price_and_current_bid(client, buyer, register, product):
    url = f"/api/products/{product['id']}/bid"
    assert client.post(url, headers=buyer, json={"amount": 100}).status_code == 400
    assert client.post(url, headers=buyer, json={"amount": 120}).status_code == 201

    other = register("gopal", "consumer")
    response = client.post(url, headers=other, json={"amount": 120})
    assert response.status_code == 400
    assert response.json()["message"] == "Bid amount must be higher than current bid"
    assert client.post(url, headers=other, json={"amount": 121}).status_code == 201


def test_seller_cannot_bid_on_own_product(client, farmer, product):
    response = client.post(f"/api/products/{product['id']}/bid", headers=farmer, json={"amount": 500})
    assert response.status_code == 400
    assert response.json()["message"] == "You cannot bid on your own product"


def test_bid_after_window_ends(app, client, buyer, product):
    app.state.storage.products[product["id"]].bidding_end_time = utcnow() - timedelta(minutes=1)
    response = client.post(f"/api/products/{product['id']}/bid", headers=buyer, json={"amount": 500})
    assert response.status_code == 400
    assert response.json()["message"] == "Bidding has ended for this product"


def test_bid_on_missing_product(client, buyer):
    assert client.post("/api/products/42/bid", headers=buyer, json={"amount": 10}).status_code == 404


def test_bid_requires_login(client, product):
    assert client.post(f"/api/products/{product['id']}/bid", json={"amount": 500}).status_code == 401


def test_bids_listed_highest_first(client, buyer, register, product):
    url = f"/api/products/{product['id']}/bid"
    other = register("gopal", "consumer")
    client.post(url, headers=buyer, json={"amount": 110})
    client.post(url, headers=other, json={"amount": 130})
    client.post(url, headers=buyer, json={"amount": 160})

    bids = client.get(f"/api/products/{product['id']}/bids").json()
    assert [b["amount"] for b in bids] == [160, 130, 110]


def test_delete_product_only_by_seller(client, farmer, buyer, product):
    url = f"/api/products/{product['id']}"
    assert client.delete(url, headers=buyer).status_code == 403

    assert client.delete(url, headers=farmer).status_code == 200
    assert client.get(url).status_code == 404
    assert client.get("/api/products").json() == []


def test_close_bidding_picks_highest_bid(client, farmer, buyer, register, product):
    url = f"/api/products/{product['id']}"
    other = register("gopal", "consumer")
    client.post(f"{url}/bid", headers=buyer, json={"amount": 140})
    client.post(f"{url}/bid", headers=other, json={"amount": 175})

    assert client.post(f"{url}/close", headers=buyer).status_code == 403

    response = client.post(f"{url}/close", headers=farmer)
    assert response.status_code == 200
    result = response.json()
    assert result["product"]["status"] == "sold"
    assert result["winningBid"]["amount"] == 175

    late = client.post(f"{url}/bid", headers=buyer, json={"amount": 300})
    assert late.status_code == 400
    assert client.post(f"{url}/close", headers=farmer).status_code == 400


def test_bid_is_broadcast_to_websockets(client, buyer, product):
    buyer_id = client.get("/api/user", headers=buyer).json()["user"]["id"]
    with client.websocket_connect("/ws") as websocket:
        assert websocket.receive_json()["type"] == "connected"

        client.post(f"/api/products/{product['id']}/bid", headers=buyer, json={"amount": 220})
        event = websocket.receive_json()
        assert event == {"type": "bid", "productId": product["id"], "amount": 220, "userId": buyer_id}


def test_demo_data_seeding():
    from core.storage import MemStorage

    storage = MemStorage()
    storage.seed_demo_data("not-a-real-hash")
    assert storage.get_user_by_username("demo_farmer") is not None
    assert len(storage.list_products()) == 3
    assert len(storage.list_posts()) == 1
