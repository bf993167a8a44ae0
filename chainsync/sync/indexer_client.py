"""GraphQL client for the external blockchain indexer."""

from typing import Any, Dict, List, Optional

import httpx

from chainsync.config import MAX_SYNC_PAGE_SIZE, Config
from chainsync.db.models import EntityType
from chainsync.errors import IndexerQueryError
from chainsync.log import get_logger

logger = get_logger(__name__)

# Plural query field and selected fields per entity type
ENTITY_QUERIES: Dict[EntityType, tuple[str, tuple[str, ...]]] = {
    EntityType.CAMPAIGN: (
        "campaignss",
        ("id", "name", "creatorName", "balance", "targetAmount", "creationTime", "owner"),
    ),
    EntityType.DONATION: (
        "donationss",
        ("id", "campaignId", "donor", "amount", "transactionHash", "blockNumber", "timestamp"),
    ),
    EntityType.WITHDRAWAL: (
        "withdrawalss",
        (
            "id", "campaignId", "name", "owner", "creatorName", "amount",
            "transactionHash", "blockNumber", "timestamp",
        ),
    ),
    EntityType.BADGE: (
        "badgess",
        ("tokenId", "owner", "name", "transactionHash", "blockNumber", "timestamp"),
    ),
}


def build_query(entity_type: EntityType) -> str:
    """GraphQL query for one page of an entity type."""
    field_name, fields = ENTITY_QUERIES[entity_type]
    selection = " ".join(fields)
    return (
        "query Page($limit: Int, $after: String) { "
        f"{field_name}(limit: $limit, after: $after) {{ "
        f"items {{ {selection} }} "
        "pageInfo { hasNextPage endCursor } "
        "} }"
    )


class IndexerClient:
    """Fetches entity lists from the indexer, following cursor pagination.

    Example usage:
        client = IndexerClient(config)
        donations = client.fetch_all(EntityType.DONATION)
    """

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the indexer client.

        Args:
            config: Configuration with indexer URL, page size and timeout
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
        """
        self.url = config.graphql_url
        self.page_size = min(config.sync_page_size, MAX_SYNC_PAGE_SIZE)
        self.max_pages = config.sync_max_pages
        self._client = httpx.Client(timeout=config.indexer_timeout_seconds, transport=transport)

    def close(self) -> None:
        self._client.close()

    def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a GraphQL query and return its ``data`` object.

        Raises:
            IndexerQueryError: On transport failure, HTTP error or GraphQL errors
        """
        try:
            response = self._client.post(self.url, json={"query": query, "variables": variables or {}})
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            raise IndexerQueryError(f"Timeout querying indexer at {self.url}") from e
        except httpx.HTTPStatusError as e:
            raise IndexerQueryError(
                f"HTTP {e.response.status_code} from indexer at {self.url}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise IndexerQueryError(f"Failed to query indexer at {self.url}: {e}") from e

        if body.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in body["errors"])
            raise IndexerQueryError(f"Indexer returned errors: {messages}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise IndexerQueryError("Indexer response has no data")
        return data

    def fetch_all(self, entity_type: EntityType) -> List[Dict[str, Any]]:
        """Fetch every item of one entity type.

        Stops after ``sync_max_pages`` pages.
        """
        field_name, _ = ENTITY_QUERIES[entity_type]
        query = build_query(entity_type)
        items: List[Dict[str, Any]] = []
        after: Optional[str] = None

        for _ in range(self.max_pages):
            data = self.query(query, {"limit": self.page_size, "after": after})
            connection = data.get(field_name) or {}
            items.extend(connection.get("items") or [])

            page_info = connection.get("pageInfo") or {}
            after = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not after:
                break
        else:
            logger.warning(
                f"Stopped fetching {field_name} after {self.max_pages} pages; "
                "raise SYNC_MAX_PAGES to fetch the rest"
            )

        logger.debug(f"Fetched {len(items)} {entity_type.value} records from indexer")
        return items
