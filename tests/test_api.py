import pytest
from fastapi.testclient import TestClient

from insight_api import main


@pytest.fixture
def client():
    main.reset_dashboard()
    return TestClient(main.app)


def test_endpoints_need_a_dataset(client):
    assert client.get("/overview").status_code == 409
    assert client.post("/visualize", json={}).status_code == 409
    assert client.get("/export/records").status_code == 409


def test_load_sample_returns_profile(client):
    resp = client.post("/datasets/sample")

    assert resp.status_code == 200
    body = resp.json()
    assert body["record_count"] == 5
    assert body["mapping"]["spend"] == "TotalSpend"
    roles = {p["name"]: p["role"] for p in body["profiles"]}
    assert roles["InvoiceDate"] == "temporal"
    assert roles["Latitude"] == "latitude"


def test_upload_csv_and_visualize_bar(client):
    files = {"file": ("vendors.csv", b"name,lat,lon,spend\nA,10,20,100\nB,,20,50\n", "text/csv")}
    resp = client.post("/datasets", files=files)
    assert resp.status_code == 200
    assert resp.json()["name"] == "vendors.csv"

    resp = client.post("/visualize", json={"chart_type": "auto"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["spec"]["type"] == "bar"
    assert body["result"]["labels"] == ["A", "B"]
    assert body["result"]["values"] == [100.0, 50.0]
    assert body["vega_lite"] is not None

    markers = client.get("/map/markers").json()
    assert [m["name"] for m in markers["markers"]] == ["A"]


def test_bad_upload_is_422_and_keeps_dataset(client):
    client.post("/datasets/sample")
    files = {"file": ("broken.json", b"[1, 2", "application/json")}

    resp = client.post("/datasets", files=files)

    assert resp.status_code == 422
    assert resp.json()["error"] == "parse_failure"
    assert client.get("/meta/profile").json()["record_count"] == 5


def test_heatmap_with_one_numeric_field_is_422(client):
    client.post("/datasets", files={"file": ("d.csv", b"region,spend\nEMEA,1\nAPAC,2\n", "text/csv")})
    assert client.post("/visualize", json={"chart_type": "bar"}).status_code == 200

    resp = client.post("/visualize", json={"chart_type": "heatmap"})

    assert resp.status_code == 422
    assert resp.json()["error"] == "insufficient_fields"
    assert main.dashboard.active_spec.type.value == "bar"


def test_unknown_chart_type_is_422(client):
    client.post("/datasets/sample")
    resp = client.post("/visualize", json={"chart_type": "sankey"})
    assert resp.status_code == 422


def test_filters_highlight_and_overview(client):
    client.post("/datasets/sample")
    client.post("/visualize", json={"chart_type": "pie", "category": "payment_type"})

    assert client.post("/highlight", json={"label": "Wire"}).json()["record_ids"] == [1, 3]

    resp = client.post("/filters", json={"equals": {"region": "EMEA"}})
    assert resp.status_code == 200
    assert resp.json()["record_count"] == 2
    assert client.post("/highlight", json={"label": "Wire"}).json()["record_ids"] == [1]
    assert client.post("/highlight", json={}).json()["record_ids"] == []

    kpis = client.get("/overview").json()["kpis"]
    assert kpis["total_vendors"] == 2

    assert client.delete("/filters").json()["record_count"] == 5


def test_invalid_filter_is_422(client):
    client.post("/datasets/sample")
    resp = client.post("/filters", json={"ranges": {"spend": {"min": 10, "max": 1}}})
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_filter"


def test_meta_values_and_record_detail(client):
    client.post("/datasets/sample")

    assert client.get("/meta/values/payment_type").json()["values"] == ["Card", "Credit", "Wire"]
    assert client.get("/meta/values/spend").status_code == 422
    assert client.get("/records/0").json()["name"] == "Acme Supplies"
    assert client.get("/records/99").status_code == 404


def test_exports_are_csv(client):
    client.post("/datasets/sample")
    client.post("/visualize", json={"chart_type": "bar", "category": "region"})

    records = client.get("/export/records")
    assert records.headers["content-type"].startswith("text/csv")
    assert records.text.splitlines()[0].startswith("id,name,")
    assert len(records.text.strip().splitlines()) == 6

    aggregation = client.get("/export/aggregation")
    lines = aggregation.text.strip().splitlines()
    assert lines[0] == "label,value"
    assert lines[1].startswith("EMEA,")


def test_export_failure_is_500(client, monkeypatch):
    client.post("/datasets/sample")

    def boom():
        raise RuntimeError("disk full")

    monkeypatch.setattr(main.dashboard, "export_frame", boom)
    resp = client.get("/export/records")

    assert resp.status_code == 500
    assert resp.json()["type"] == "RuntimeError"
