from datetime import timedelta

from stockledger.utils.timezone import today_local

HEADERS = {"X-User-Id": "cashier-12"}


def test_movement_envelope(client, make_product):
    p = make_product(stock=50)
    r = client.post("/api/stock/movements", headers=HEADERS, json={
        "product_id": p.id, "movement_type": "sale", "quantity": -3, "reason": "POS sale",
        "reference_type": "sale", "reference_id": "INV-0001",
    })
    assert r.status_code == 201
    body = r.json()
    assert body["ok"] is True
    assert body["data"]["quantity_before"] == 50
    assert body["data"]["quantity_after"] == 47
    assert body["data"]["created_by"] == "cashier-12"
    assert "warnings" not in body

    product = client.get(f"/api/stock/products/{p.id}").json()["data"]
    assert product["stock_quantity"] == 47


def test_movement_errors(client, make_product):
    p = make_product(stock=2)

    r = client.post("/api/stock/movements", json={"product_id": p.id, "movement_type": "sale", "quantity": 3})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_movement"

    r = client.post("/api/stock/movements", json={"product_id": p.id, "movement_type": "sale", "quantity": -3})
    assert r.status_code == 409
    err = r.json()["error"]
    assert err["code"] == "insufficient_stock"
    assert err["details"] == {"product_id": p.id, "requested": 3, "available": 2}

    r = client.post("/api/stock/movements", json={"product_id": 9999, "movement_type": "purchase", "quantity": 1})
    assert r.status_code == 404

    r = client.post("/api/stock/movements", json={"product_id": p.id, "movement_type": "gift", "quantity": 1})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "validation_error"

    r = client.post("/api/stock/movements", json={
        "product_id": p.id, "movement_type": "adjustment", "quantity": 1, "expected_version": 999,
    })
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "concurrent_modification"

    assert client.get(f"/api/stock/products/{p.id}").json()["data"]["stock_quantity"] == 2


def test_sync_warning_surfaces_but_movement_sticks(client, make_product, fake_adapter):
    p = make_product(stock=1)
    fake_adapter.fail_times = 99
    r = client.post("/api/stock/movements", json={"product_id": p.id, "movement_type": "purchase", "quantity": 5})
    assert r.status_code == 201
    body = r.json()
    assert body["warnings"] and "Marketplace sync failed" in body["warnings"][0]
    assert client.get(f"/api/stock/products/{p.id}").json()["data"]["stock_quantity"] == 6

    failed = client.get("/api/sync/events", params={"status": "failed"}).json()["data"]
    assert [e["delta"] for e in failed] == [5]

    fake_adapter.fail_times = 0
    retried = client.post("/api/sync/events/retry", json={}).json()
    assert [e["status"] for e in retried["data"]] == ["synced"]


def test_opening_balance_and_history(client, make_product):
    p = make_product(stock=10)
    r = client.post("/api/stock/opening-balance", json={"product_id": p.id, "quantity": 100,
                                                        "effective_date": "2024-01-01"})
    assert r.status_code == 201
    assert r.json()["data"]["quantity_after"] == 110

    r = client.post("/api/stock/opening-balance", json={"product_id": p.id, "quantity": 0})
    assert r.status_code == 422

    hist = client.get("/api/stock/movements", params={"product_id": p.id}).json()
    assert hist["meta"]["total"] == 2
    assert client.get("/api/stock/ledger/verify").json()["meta"]["consistent"] is True


def test_batches_endpoints(client, make_product):
    p = make_product()
    soon = (today_local() + timedelta(days=12)).isoformat()
    r = client.post("/api/stock/batches", json={
        "product_id": p.id, "batch_number": "LOT-9", "quantity": 8,
        "expiry_date": soon, "supplier": "Bangkok Drug",
    })
    assert r.status_code == 201
    data = r.json()["data"]
    batch_id = data["batch"]["id"]
    assert data["batch"]["expiry_status"] == "critical"
    assert data["movement"]["reason"] == "Batch receipt: LOT-9"

    near = client.get("/api/stock/batches/near-expiry", params={"days": 30}).json()["data"]
    assert [b["id"] for b in near] == [batch_id]

    later = (today_local() + timedelta(days=200)).isoformat()
    r = client.patch("/api/stock/batches/expiry", json={"batch_ids": [batch_id], "expiry_date": later})
    assert r.json()["data"][0]["expiry_status"] == "normal"

    r = client.post(f"/api/stock/batches/{batch_id}/write-off", json={"movement_type": "damaged"})
    assert r.status_code == 201
    assert r.json()["data"]["quantity"] == -8

    batches = client.get(f"/api/stock/products/{p.id}/batches").json()["data"]
    assert batches == []


def test_reports(client, make_product):
    low = make_product(name="Low", stock=2, reorder=5, min_stock=1)
    make_product(name="Plenty", stock=50, reorder=5)
    r = client.post("/api/stock/movements", json={"product_id": low.id, "movement_type": "adjustment", "quantity": -4})
    assert r.status_code == 201

    reorder = client.get("/api/stock/reports/reorder").json()["data"]
    assert [row["product_id"] for row in reorder] == [low.id]
    assert reorder[0]["out_of_stock"] is True
    assert reorder[0]["status"] == "critical"

    negative = client.get("/api/stock/reports/negative").json()["data"]
    assert [row["stock_quantity"] for row in negative] == [-2]

    critical = client.get("/api/stock/products", params={"status": "critical"}).json()["data"]
    assert [row["id"] for row in critical] == [low.id]


def test_counting_flow(client, make_product):
    p = make_product(name="Omeprazole 20mg", stock=47, cost="2.00", barcode="8850000047000")

    r = client.post("/api/counting/sessions", headers=HEADERS, json={"warehouse_id": "main"})
    assert r.status_code == 201
    sid = r.json()["data"]["id"]

    r = client.post("/api/counting/sessions", json={"warehouse_id": "main"})
    assert r.status_code == 409
    assert r.json()["error"]["details"]["blocking_session_id"] == sid

    r = client.post(f"/api/counting/sessions/{sid}/items", json={"query": "8850000047000"})
    assert r.status_code == 201
    item = r.json()["data"]["item"]
    assert item["system_quantity"] == 47

    again = client.post(f"/api/counting/sessions/{sid}/items", json={"query": "8850000047000"})
    assert again.status_code == 200
    assert again.json()["data"]["already_counted"] is True

    r = client.put(f"/api/counting/sessions/{sid}/items/{item['id']}", json={"counted_quantity": 45})
    assert r.json()["data"]["difference"] == -2

    summary = client.get(f"/api/counting/sessions/{sid}/summary").json()["data"]
    assert summary["unmatched_items"] == 1
    assert float(summary["total_value_difference"]) == -4.0

    assert client.post(f"/api/counting/sessions/{sid}/pause").json()["data"]["status"] == "paused"
    assert client.get("/api/counting/sessions/active", params={"warehouse_id": "main"}).json()["data"] is None
    assert client.post(f"/api/counting/sessions/{sid}/resume").json()["data"]["status"] == "in_progress"

    r = client.post(f"/api/counting/sessions/{sid}/complete", headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "completed"
    assert client.get(f"/api/stock/products/{p.id}").json()["data"]["stock_quantity"] == 45

    r = client.put(f"/api/counting/sessions/{sid}/items/{item['id']}", json={"counted_quantity": 1})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "session_state"

    r = client.get(f"/api/counting/sessions/{sid}/export", params={"format": "csv"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert r.content.startswith(b"\xef\xbb\xbf")
    assert "attachment" in r.headers["content-disposition"]


def test_counting_candidates(client, make_product):
    make_product(name="Amlodipine 5mg")
    make_product(name="Amlodipine 10mg")
    sid = client.post("/api/counting/sessions", json={"warehouse_id": "retail"}).json()["data"]["id"]

    r = client.post(f"/api/counting/sessions/{sid}/items", json={"query": "amlo"})
    data = r.json()["data"]
    assert data["item"] is None
    assert len(data["candidates"]) == 2

    r = client.post(f"/api/counting/sessions/{sid}/items", json={})
    assert r.status_code == 422


def test_unknown_session(client):
    r = client.get("/api/counting/sessions/12345")
    assert r.status_code == 404
    assert r.json()["ok"] is False
