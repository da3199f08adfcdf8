"""
Tests for API endpoints.
"""

from fastapi import status


class TestRootEndpoint:
    """Test the root and health endpoints."""

    def test_root_returns_json(self, client):
        """Test that root endpoint returns expected JSON."""
        response = client.get("/")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["message"] == "Listing Crawler API"
        assert "version" in data

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "ok"}


class TestListingsEndpoint:
    """Test the listings endpoints."""

    def test_get_listings_empty(self, client):
        """Test getting listings when database is empty."""
        response = client.get("/api/listings")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []

    def test_get_listings_with_data(self, client, sample_listing):
        """Test getting listings when data exists."""
        response = client.get("/api/listings")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data) == 3
        assert {"url", "title", "price", "rating", "location", "platform"} <= set(data[0])

    def test_filter_by_location(self, client, sample_listing):
        response = client.get("/api/listings?location=rome")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [d["title"] for d in data] == ["Roman terrace"]

    def test_filter_by_price(self, client, sample_listing):
        response = client.get("/api/listings?min_price=100&max_price=200")

        data = response.json()
        assert [d["price"] for d in data] == [120.0]

    def test_filter_by_platform(self, client, sample_listing):
        assert len(client.get("/api/listings?platform=Airbnb").json()) == 3
        assert client.get("/api/listings?platform=Vrbo").json() == []

    def test_pagination(self, client, sample_listing):
        first = client.get("/api/listings?limit=2").json()
        rest = client.get("/api/listings?limit=2&offset=2").json()
        assert len(first) == 2
        assert len(rest) == 1
        assert {d["id"] for d in first}.isdisjoint({d["id"] for d in rest})

    def test_invalid_limit(self, client):
        response = client.get("/api/listings?limit=0")
        assert response.status_code == 422

    def test_get_listing_by_id(self, client, sample_listing):
        listing_id = sample_listing[0].id
        response = client.get(f"/api/listings/{listing_id}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["url"] == sample_listing[0].url

    def test_get_listing_not_found(self, client):
        """Test getting a non-existent listing."""
        response = client.get("/api/listings/99999")
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestStatsEndpoint:
    """Test the insights endpoint."""

    def test_stats_empty(self, client):
        response = client.get("/api/stats")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["total"] == 0

    def test_stats_with_data(self, client, sample_listing):
        data = client.get("/api/stats").json()

        assert data["total"] == 3
        assert data["max_price"] == 240.0
        assert data["most_expensive"]["title"] == "Roman terrace"
        assert data["platform_counts"] == {"Airbnb": 3}
