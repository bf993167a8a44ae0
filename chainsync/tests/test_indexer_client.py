"""Tests for the indexer GraphQL client."""

import json

import httpx
import pytest

from chainsync.db.models import EntityType
from chainsync.errors import IndexerQueryError
from chainsync.sync.indexer_client import IndexerClient, build_query


def client_with(test_config, handler):
    return IndexerClient(test_config, transport=httpx.MockTransport(handler))


def test_build_query_selects_plural_field():
    """Test the generated query for donations."""
    query = build_query(EntityType.DONATION)

    assert "donationss(limit: $limit, after: $after)" in query
    assert "transactionHash" in query
    assert "pageInfo { hasNextPage endCursor }" in query


def test_fetch_all_follows_pages(test_config):
    """Test that pagination follows endCursor until hasNextPage is false."""
    seen_after = []

    def handler(request):
        assert request.url == "http://indexer.test/graphql"
        variables = json.loads(request.content)["variables"]
        seen_after.append(variables["after"])
        assert variables["limit"] == 1000
        if variables["after"] is None:
            page = {"items": [{"id": "a"}, {"id": "b"}], "pageInfo": {"hasNextPage": True, "endCursor": "c1"}}
        else:
            page = {"items": [{"id": "c"}], "pageInfo": {"hasNextPage": False, "endCursor": "c2"}}
        return httpx.Response(200, json={"data": {"donationss": page}})

    items = client_with(test_config, handler).fetch_all(EntityType.DONATION)

    assert [item["id"] for item in items] == ["a", "b", "c"]
    assert seen_after == [None, "c1"]


def test_fetch_all_stops_at_max_pages(test_config):
    """Test that a never-ending cursor is cut off at sync_max_pages."""
    test_config.sync_max_pages = 3
    calls = []

    def handler(request):
        calls.append(1)
        page = {"items": [{"tokenId": len(calls)}], "pageInfo": {"hasNextPage": True, "endCursor": str(len(calls))}}
        return httpx.Response(200, json={"data": {"badgess": page}})

    items = client_with(test_config, handler).fetch_all(EntityType.BADGE)

    assert len(calls) == 3
    assert len(items) == 3


def test_graphql_errors_raise(test_config):
    """Test that a GraphQL errors array becomes IndexerQueryError."""
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "Cannot query field"}]})

    with pytest.raises(IndexerQueryError, match="Cannot query field"):
        client_with(test_config, handler).fetch_all(EntityType.CAMPAIGN)


def test_http_error_raises(test_config):
    """Test that a non-2xx response becomes IndexerQueryError."""
    def handler(request):
        return httpx.Response(503, text="unavailable")

    with pytest.raises(IndexerQueryError, match="HTTP 503"):
        client_with(test_config, handler).fetch_all(EntityType.CAMPAIGN)


def test_connection_error_raises(test_config):
    """Test that a transport failure becomes IndexerQueryError."""
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(IndexerQueryError):
        client_with(test_config, handler).fetch_all(EntityType.WITHDRAWAL)


def test_missing_connection_yields_empty_list(test_config):
    """Test that an absent field is treated as no items."""
    def handler(request):
        return httpx.Response(200, json={"data": {"withdrawalss": None}})

    assert client_with(test_config, handler).fetch_all(EntityType.WITHDRAWAL) == []
