from bson import ObjectId


def place_order(client, user, product, **extra):
    payload = {
        "user": user["id"],
        "products": [{"product": product["id"], "quantity": 2, "price": 24.5}],
        "totalAmount": 53.0,
        "shippingAddress": "1 Main St",
    }
    payload.update(extra)
    return client.post("/order", json=payload)


def test_create_order_applies_defaults(client, user, product):
    response = place_order(client, user, product)
    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "Pending"
    assert order["orderDate"]
    assert order["products"] == [{"product": product["id"], "quantity": 2, "price": 24.5}]


def test_get_order_expands_user_and_products(client, user, product):
    order = place_order(client, user, product).json()
    fetched = client.get(f"/order/{order['id']}").json()
    assert fetched["user"] == client.get(f"/user/{user['id']}").json()
    line = fetched["products"][0]
    assert line["product"] == client.get(f"/product/{product['id']}").json()
    assert line["quantity"] == 2
    assert line["price"] == 24.5


def test_list_orders_expanded(client, user, product):
    place_order(client, user, product)
    orders = client.get("/orders").json()
    assert len(orders) == 1
    assert orders[0]["user"]["email"] == user["email"]
    assert orders[0]["products"][0]["product"]["id"] == product["id"]


def test_update_status_accepts_any_text_and_keeps_date(client, user, product):
    order = place_order(client, user, product).json()
    response = client.put(f"/order/{order['id']}", json={"status": "Left at the door"})
    assert response.status_code == 200
    updated = response.json()
    assert updated["status"] == "Left at the door"
    assert updated["orderDate"] == order["orderDate"]
    assert updated["totalAmount"] == 53.0


def test_order_rejects_unknown_product(client, user):
    response = client.post(
        "/order",
        json={"user": user["id"], "products": [{"product": str(ObjectId()), "quantity": 1}]},
    )
    assert response.status_code == 400
    assert client.get("/orders").json() == []


def test_update_order_rejects_unknown_user(client, user, product):
    order = place_order(client, user, product).json()
    response = client.put(f"/order/{order['id']}", json={"user": str(ObjectId())})
    assert response.status_code == 400


def test_missing_order(client):
    missing = str(ObjectId())
    assert client.get(f"/order/{missing}").json() == {"detail": "Order not found"}
    assert client.put(f"/order/{missing}", json={"status": "Shipped"}).status_code == 404
    assert client.delete(f"/order/{missing}").status_code == 404


def test_delete_order(client, user, product):
    order = place_order(client, user, product).json()
    assert client.delete(f"/order/{order['id']}").json() == {"message": "Order deleted successfully"}
    assert client.get("/orders").json() == []


def test_null_fields_in_update_keep_defaults(client, user, product):
    order = place_order(client, user, product).json()
    response = client.put(
        f"/order/{order['id']}",
        json={"status": None, "orderDate": None, "user": None, "shippingAddress": "2 Side St"},
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["status"] == "Pending"
    assert updated["orderDate"] == order["orderDate"]
    assert updated["user"] == user["id"]
    assert updated["shippingAddress"] == "2 Side St"
