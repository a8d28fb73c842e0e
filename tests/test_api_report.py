URL = "https://www.portalinmobiliario.com/venta/departamento/providencia-metropolitana/MLC-987654"


def test_health(client):
    r = client.get("/v1/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_report_success_with_offline_adapters(client):
    r = client.post("/v1/report", json={"url": URL}, headers={"X-Request-Id": "test-req-1"})

    assert r.status_code == 200
    assert r.headers["X-Request-Id"] == "test-req-1"
    data = r.json()
    for section in ("financial_indicators", "location_analysis", "security_analysis", "executive_summary"):
        assert section in data["analysis"]
    meta = data["metadata"]
    assert meta["request_id"] == "test-req-1"
    assert meta["sources"] == {"extractor": True, "search": True, "loan_simulator": True}
    assert 0 <= meta["confidence"] <= 100
    assert meta["analysis_source"] in ("model", "fallback")
    assert data["metrics"]["cash_flow_breakdown"]["rent"] > 0
    assert data["mortgage"]["principal_uf"] > 0


def test_report_rejects_unsupported_portal(client):
    r = client.post("/v1/report", json={"url": "https://www.example.com/casa/123"})
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "url"


def test_report_rejects_out_of_bounds_price(client):
    r = client.post("/v1/report", json={"url": URL, "property_price_uf": 50})
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "principal_uf"


def test_report_rejects_wrong_number_of_terms(client):
    r = client.post("/v1/report", json={"url": URL, "loan_terms": [15, 20]})
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "loan_terms"


def test_missing_url_is_a_schema_error(client):
    r = client.post("/v1/report", json={})
    assert r.status_code == 422


def test_model_status_exposes_breaker_state(client):
    r = client.get("/v1/model/status")
    assert r.status_code == 200
    assert r.json()["breaker"]["state"] in ("closed", "open", "half_open")


def test_metrics_endpoint(client):
    client.post("/v1/report", json={"url": URL})
    r = client.get("/v1/metrics")
    assert r.status_code == 200
    assert "reports_total" in r.text
