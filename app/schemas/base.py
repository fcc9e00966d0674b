"""
Base Schema Classes for Pydantic Models

RULE: Response schemas that read from ORM rows (quotes, invoices,
stock movements, ...) inherit from BaseResponseSchema.

Money and quantities travel as Decimal. Pydantic serializes them as JSON
strings ("11500.00") so no precision is lost between client and ledger.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Read model built with `model_validate(orm_row)`.

    Usage:
        class InvoiceResponse(BaseResponseSchema):
            id: UUID
            invoice_number: str
            total_amount: Decimal
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Request body for creating records. Unknown fields are ignored."""
    model_config = ConfigDict(extra='ignore')


class BaseUpdateSchema(BaseModel):
    """
    Request body for partial updates.

    Every field is optional; services apply only the fields that were sent
    (model_dump(exclude_unset=True)).
    """
    model_config = ConfigDict(extra='ignore')
