from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, conint

U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1
I128_MAX = 2**127 - 1
I128_MIN = -(2**127)

MAX_SPLIT_PERCENTAGE = 10000  # 100% in basis points

U64 = conint(ge=0, le=U64_MAX)
U32 = conint(ge=0, le=U32_MAX)
I128 = conint(ge=I128_MIN, le=I128_MAX)


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True, strict=True)

    id: conint(ge=1, le=U64_MAX)
    owner: str
    subscriber: str
    amount: I128
    period_days: conint(ge=1, le=U32_MAX)
    recipient: str
    split_percentage: conint(ge=0, le=MAX_SPLIT_PERCENTAGE)
    next_billing_date: U64
    last_payment_date: U64 = 0
    is_active: bool = True
    created_at: U64

    def to_item(self) -> Dict[str, Any]:
        # amount is a string: DynamoDB numbers top out at 38 digits.
        item = self.model_dump()
        item["amount"] = str(self.amount)
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Subscription":
        return cls(
            id=int(item["id"]),
            owner=str(item["owner"]),
            subscriber=str(item["subscriber"]),
            amount=int(item["amount"]),
            period_days=int(item["period_days"]),
            recipient=str(item["recipient"]),
            split_percentage=int(item["split_percentage"]),
            next_billing_date=int(item["next_billing_date"]),
            last_payment_date=int(item.get("last_payment_date") or 0),
            is_active=bool(item["is_active"]),
            created_at=int(item["created_at"]),
        )


class RecipientBalance(BaseModel):
    model_config = ConfigDict(frozen=True, strict=True)

    address: str
    balance: I128 = 0

    def to_item(self) -> Dict[str, Any]:
        return {"address": self.address, "balance": str(self.balance)}

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "RecipientBalance":
        return cls(address=str(item["address"]), balance=int(item["balance"]))


class SubscriptionPage(BaseModel):
    items: List[Subscription] = Field(default_factory=list)
    next_cursor: Optional[str] = None
