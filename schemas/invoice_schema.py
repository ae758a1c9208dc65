from __future__ import annotations

from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def new_item_id() -> str:
    return uuid4().hex


class _CamelModel(BaseModel):
    # Attributes are snake_case, the wire format is camelCase; both are accepted on input.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class LineItem(_CamelModel):
    id: str = Field(default_factory=new_item_id)
    description: str = ""
    quantity: float = 1.0
    unit_price: float = 0.0
    amount: float = 0.0


class InvoiceRecord(_CamelModel):
    invoice_number: str = ""
    date: str = ""
    due_date: str = ""
    customer_name: str = ""
    customer_address: str = ""
    customer_email: str = ""
    items: list[LineItem] = Field(default_factory=list)
    subtotal: float = 0.0
    tax_rate: float = 0.0
    tax_amount: float = 0.0
    total: float = 0.0
    notes: str = ""

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ValidationIssue(BaseModel):
    field: str
    message: str


class ProcessingStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_busy(self) -> bool:
        return self in {ProcessingStatus.UPLOADING, ProcessingStatus.PROCESSING}
