"""Tests for the dashboard stats API."""

from datetime import date, timedelta

from conftest import CHROME_UA, OTHER_OWNER, auth, drain, shorten

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)


def _stats(client, owner=None, **params):
    resp = client.get("/api/dashboard/stats", params=params, headers=auth(owner) if owner else auth())
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_empty_owner_gets_zeroed_stats(client):
    body = _stats(client)
    assert body["totalUrls"] == 0
    assert body["totalClicks"] == 0
    assert body["clicksToday"] == 0
    assert body["urlsToday"] == 0
    assert body["topUrls"] == []
    assert body["clicksByCountry"] == []
    assert body["deviceStats"] == []
    assert body["browserStats"] == []
    assert len(body["clicksByDate"]) == 7
    assert all(p["clicks"] == 0 and p["urls"] == 0 for p in body["clicksByDate"])


def test_series_covers_requested_days_ending_today(client):
    body = _stats(client, days=3)
    dates = [date.fromisoformat(p["date"]) for p in body["clicksByDate"]]
    assert len(dates) == 3
    assert dates == [dates[-1] - timedelta(days=2), dates[-1] - timedelta(days=1), dates[-1]]


def test_days_out_of_range(client):
    resp = client.get("/api/dashboard/stats?days=0", headers=auth())
    assert resp.status_code == 400


def test_stats_reflect_clicks(client):
    busy = shorten(client, "https://example.com/busy")["shortCode"]
    quiet = shorten(client, "https://example.com/quiet")["shortCode"]
    shorten(client, "https://example.com/other", owner=OTHER_OWNER)

    for _ in range(3):
        client.get(f"/{busy}", headers={"user-agent": CHROME_UA})
    client.get(f"/{quiet}", headers={"user-agent": IPHONE_UA})
    drain(client)

    body = _stats(client)
    assert body["totalUrls"] == 2
    assert body["totalClicks"] == 4
    assert body["clicksToday"] == 4
    assert body["urlsToday"] == 2
    assert body["clicksByDate"][-1] == {"date": body["clicksByDate"][-1]["date"], "clicks": 4, "urls": 2}

    assert [u["shortCode"] for u in body["topUrls"]] == [busy, quiet]
    assert body["topUrls"][0]["clickCount"] == 3

    assert body["clicksByCountry"] == [{"country": "Unknown", "clicks": 4, "percentage": 100}]
    assert body["deviceStats"] == [
        {"device": "Desktop", "count": 3, "percentage": 75},
        {"device": "Mobile", "count": 1, "percentage": 25},
    ]
    assert body["browserStats"] == [
        {"browser": "Chrome", "count": 3, "percentage": 75},
        {"browser": "Mobile Safari", "count": 1, "percentage": 25},
    ]


def test_other_owners_see_only_their_own(client):
    code = shorten(client)["shortCode"]
    client.get(f"/{code}")
    drain(client)

    body = _stats(client, owner=OTHER_OWNER)
    assert body["totalUrls"] == 0
    assert body["totalClicks"] == 0


def test_deleted_urls_drop_out(client):
    code = shorten(client)["shortCode"]
    client.get(f"/{code}")
    drain(client)
    client.delete(f"/api/url/{code}", headers=auth())

    body = _stats(client)
    assert body["totalUrls"] == 0
    assert body["totalClicks"] == 0


def test_requires_auth(client):
    assert client.get("/api/dashboard/stats").status_code == 401
