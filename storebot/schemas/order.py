from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from storebot.models.ledger import Currency

class PlaceOrder(BaseModel):
    """Payload the shop mini app posts back through web_app_data."""
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(alias="productId")
    quantity: Optional[int] = Field(default=1, ge=1)
    payment: Currency
    total: float = Field(ge=0)
    receiver: str = Field(min_length=1)
