"""
Tests for the listing service endpoints against a temporary database.
"""
import io

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from propview_api.config import Config
from propview_api.database import distance_km, insert_property
from propview_api.main import app

AUSTIN = (30.2672, -97.7431)

PROPERTIES = [
    dict(id="p1", title="Downtown loft", price=250000, property_type="condo", status="for_sale",
         bedrooms=2, bathrooms=1, square_feet=900, city="Austin", latitude=AUSTIN[0],
         longitude=AUSTIN[1], images=["https://images.example.com/p1.jpg"], has_pool=True,
         created_at="2024-01-03 10:00:00"),
    dict(id="p2", title="Suburban house", description="Quiet street with a garden", price=450000,
         property_type="house", status="for_sale", bedrooms=4, bathrooms=3, square_feet=2400,
         city="Round Rock", latitude=30.5083, longitude=-97.6789, has_garage=True, has_garden=True,
         created_at="2024-01-02 10:00:00"),
    dict(id="p3", title="Beach condo", price=3000, property_type="condo", status="for_rent",
         bedrooms=1, bathrooms=1, square_feet=650, city="Miami", latitude=25.7617,
         longitude=-80.1918, created_at="2024-01-01 10:00:00"),
    dict(id="p4", title="Downtown townhouse", price=600000, property_type="townhouse", status="sold",
         bedrooms=3, bathrooms=2, square_feet=1800, city="Austin", created_at="2024-01-04 10:00:00"),
]


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "DB_PATH", str(tmp_path / "propview.db"))
    monkeypatch.setattr(Config, "GOOGLE_MAPS_API_KEY", "maps-key")
    with TestClient(app) as test_client:
        for prop in PROPERTIES:
            insert_property(prop)
        yield test_client


def ids(response):
    assert response.status_code == 200, response.text
    return [item["id"] for item in response.json()]


def test_health(client):
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["properties"] == len(PROPERTIES)


def test_list_defaults_to_newest_with_camel_case_fields(client):
    response = client.get("/api/properties")
    assert ids(response) == ["p4", "p1", "p2", "p3"]
    loft = response.json()[1]
    assert loft["squareFeet"] == 900
    assert loft["propertyType"] == "condo"
    assert loft["hasPool"] is True
    assert loft["hasGarage"] is False
    assert loft["images"] == ["https://images.example.com/p1.jpg"]


@pytest.mark.parametrize("query, expected", [
    ("search=downtown", ["p4", "p1"]),
    ("keyword=garden", ["p2"]),
    ("propertyType=condo&propertyType=house", ["p1", "p2", "p3"]),
    ("status=for_sale", ["p1", "p2"]),
    ("city=austin", ["p4", "p1"]),
    ("minPrice=300000", ["p4", "p2"]),
    ("maxPrice=250000", ["p1", "p3"]),
    ("bedrooms=3", ["p4", "p2"]),
    ("bathrooms=2", ["p4", "p2"]),
    ("hasPool=true", ["p1"]),
    ("hasGarage=true&hasGarden=true", ["p2"]),
    ("latitude=30.2672&longitude=-97.7431&radius=10", ["p1"]),
    ("latitude=30.2672&longitude=-97.7431&radius=50", ["p1", "p2"]),
])
def test_filters(client, query, expected):
    assert ids(client.get(f"/api/properties?{query}")) == expected


@pytest.mark.parametrize("sort, expected", [
    ("oldest", ["p3", "p2", "p1", "p4"]),
    ("price-low", ["p3", "p1", "p2", "p4"]),
    ("price-high", ["p4", "p2", "p1", "p3"]),
    ("size-high", ["p2", "p4", "p1", "p3"]),
    ("bedrooms-low", ["p3", "p1", "p4", "p2"]),
])
def test_sorting(client, sort, expected):
    assert ids(client.get(f"/api/properties?sortBy={sort}")) == expected


def test_limit_and_offset(client):
    assert ids(client.get("/api/properties?limit=2&offset=0")) == ["p4", "p1"]
    assert ids(client.get("/api/properties?limit=2&offset=2")) == ["p2", "p3"]
    assert ids(client.get("/api/properties?limit=2&offset=4")) == []
    assert client.get("/api/properties?limit=0").status_code == 422
    assert client.get("/api/properties?limit=101").status_code == 422


def test_property_detail(client):
    assert client.get("/api/properties/p2").json()["city"] == "Round Rock"
    missing = client.get("/api/properties/nope")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Property not found"}


def test_favorites_are_per_user(client):
    alice = {"X-User-Id": "alice"}
    first = client.post("/api/properties/p1/favorite", headers=alice)
    assert first.json() == {"propertyId": "p1", "isFavorited": True, "changed": True}
    assert client.post("/api/properties/p1/favorite", headers=alice).json()["changed"] is False

    assert client.get("/api/properties/p1/is-favorited", headers=alice).json() == {"isFavorited": True}
    assert ids(client.get("/api/user/favorites", headers=alice)) == ["p1"]
    assert ids(client.get("/api/user/favorites", headers={"X-User-Id": "bob"})) == []

    removed = client.delete("/api/properties/p1/favorite", headers=alice)
    assert removed.json()["changed"] is True
    assert client.get("/api/properties/p1/is-favorited", headers=alice).json() == {"isFavorited": False}


def test_favorite_unknown_property(client):
    assert client.post("/api/properties/nope/favorite").status_code == 404


def test_maps_config(client):
    assert client.get("/api/config/maps").json() == {"apiKey": "maps-key"}


def test_export_csv_uses_filters(client):
    response = client.get("/api/export/csv?city=austin&sortBy=price-low")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    df = pd.read_csv(io.StringIO(response.text))
    assert list(df["id"]) == ["p1", "p4"]
    assert df.loc[0, "images"] == "https://images.example.com/p1.jpg"


def test_shell_and_manifest(client):
    page = client.get("/")
    assert page.status_code == 200
    assert 'hx-trigger="change, keyup delay:300ms from:input"' in page.text
    assert client.get("/manifest.json").json()["start_url"] == "/"


def test_cards_end_with_sentinel_on_full_page(client, monkeypatch):
    monkeypatch.setattr(Config, "DEFAULT_API_LIMIT", 2)
    first = client.get("/ui/cards?sortBy=price-low")
    assert first.text.count("<article") == 2
    assert 'hx-trigger="revealed"' in first.text
    assert "offset=2" in first.text

    # a short page is the last one
    last = client.get("/ui/cards?sortBy=price-low&offset=3")
    assert last.text.count("<article") == 1
    assert "revealed" not in last.text

    # blank form fields are ignored
    blank = client.get("/ui/cards?minPrice=&search=&offset=3")
    assert blank.text.count("<article") == 1


def test_distance_km():
    assert distance_km(*AUSTIN, *AUSTIN) == 0.0
    assert 25 < distance_km(*AUSTIN, 30.5083, -97.6789) < 30
    assert distance_km(None, 0, 0, 0) is None
