"""Pydantic models for records delivered by the indexer.

The indexer speaks camelCase; the models accept either the camelCase alias or
the snake_case field name. Big integers may arrive as JSON strings.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from chainsync.db.models import EntityType
from chainsync.errors import RecordValidationError


class IndexerRecord(BaseModel):
    """Base for every synced record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    @property
    def block_number_hint(self) -> Optional[int]:
        """Block number to feed the sync watermark, if the record has one."""
        return getattr(self, "block_number", None)


class CampaignRecord(IndexerRecord):
    """Campaign as reported by the indexer."""
    id: int = Field(ge=0)
    name: str = Field(min_length=1)
    owner: str = Field(min_length=1)
    target_amount: int = Field(ge=0)
    creation_time: int = Field(ge=0)
    creator_name: str = ""
    balance: int = Field(default=0, ge=0)

    @field_validator("owner")
    @classmethod
    def lowercase_hex(cls, v: str) -> str:
        """Ensure addresses are lowercase."""
        return v.lower()

    @field_validator("creator_name", mode="before")
    @classmethod
    def blank_creator(cls, v: Any) -> Any:
        """A missing or null creator name is stored as empty."""
        return "" if v is None else v


class DonationRecord(IndexerRecord):
    """Donation event. Immutable once stored."""
    id: str = Field(min_length=1)
    campaign_id: int = Field(ge=0)
    donor: str = Field(min_length=1)
    amount: int = Field(ge=0)
    transaction_hash: str = Field(min_length=1)
    block_number: int = Field(ge=0)
    timestamp: int = Field(ge=0)

    @field_validator("donor", "transaction_hash")
    @classmethod
    def lowercase_hex(cls, v: str) -> str:
        """Ensure hex strings are lowercase."""
        return v.lower()


class WithdrawalRecord(IndexerRecord):
    """Withdrawal event. Immutable once stored."""
    id: str = Field(min_length=1)
    campaign_id: int = Field(ge=0)
    owner: str = Field(min_length=1)
    amount: int = Field(ge=0)
    transaction_hash: str = Field(min_length=1)
    block_number: int = Field(ge=0)
    timestamp: int = Field(ge=0)
    name: Optional[str] = None
    creator_name: Optional[str] = None

    @field_validator("owner", "transaction_hash")
    @classmethod
    def lowercase_hex(cls, v: str) -> str:
        """Ensure hex strings are lowercase."""
        return v.lower()


class BadgeRecord(IndexerRecord):
    """Badge NFT. Only the owner changes after mint."""
    token_id: int = Field(ge=0)
    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)
    transaction_hash: str = Field(min_length=1)
    block_number: int = Field(ge=0)
    timestamp: int = Field(ge=0)

    @field_validator("owner", "transaction_hash")
    @classmethod
    def lowercase_hex(cls, v: str) -> str:
        """Ensure hex strings are lowercase."""
        return v.lower()


class CampaignBalanceUpdate(IndexerRecord):
    campaign_id: int = Field(ge=0)
    new_balance: int = Field(ge=0)


RECORD_MODELS: Dict[EntityType, Type[IndexerRecord]] = {
    EntityType.CAMPAIGN: CampaignRecord,
    EntityType.DONATION: DonationRecord,
    EntityType.WITHDRAWAL: WithdrawalRecord,
    EntityType.BADGE: BadgeRecord,
}

# Batch payload key for each entity type
BATCH_KEYS: Dict[EntityType, str] = {
    entity_type: f"{entity_type.value}s" for entity_type in RECORD_MODELS
}

R = TypeVar("R", bound=BaseModel)


def parse_record(
    model: Type[R],
    payload: Any,
    entity_type: str,
    index: Optional[int] = None,
) -> R:
    """Validate one payload, raising RecordValidationError on failure."""
    if not isinstance(payload, dict):
        raise RecordValidationError(
            entity_type,
            [{"loc": (), "msg": "record must be a JSON object", "type": "dict_type"}],
            index=index,
        )
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise RecordValidationError(
            entity_type, e.errors(include_url=False, include_input=False), index=index
        ) from e


def parse_batch(payload: Any) -> Dict[EntityType, List[IndexerRecord]]:
    """Validate every item of a batch payload before anything is written.

    Missing or null lists count as empty.

    Raises:
        RecordValidationError: On the first invalid item (or malformed list)
    """
    if not isinstance(payload, dict):
        raise RecordValidationError(
            "batch", [{"loc": (), "msg": "batch must be a JSON object", "type": "dict_type"}]
        )

    parsed: Dict[EntityType, List[IndexerRecord]] = {}
    for entity_type, model in RECORD_MODELS.items():
        key = BATCH_KEYS[entity_type]
        items = payload.get(key) or []
        if not isinstance(items, list):
            raise RecordValidationError(
                entity_type.value,
                [{"loc": (key,), "msg": "must be a list", "type": "list_type"}],
            )
        parsed[entity_type] = [
            parse_record(model, item, entity_type.value, index=i)
            for i, item in enumerate(items)
        ]
    return parsed
