"""Inventory-bearing catalog documents."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from storefront.models.order import OrderItem
from storefront.utils.helpers import generate_object_id


class ProductStatus(str, Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    OUT_OF_STOCK = "OutOfStock"
    ARCHIVED = "Archived"


class Variant(BaseModel):
    """A purchasable variant of a product with its own stock."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_object_id, alias="_id")
    name: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stockQuantity: int = Field(default=0, ge=0)
    isActive: bool = True


class VariantConfiguration(BaseModel):
    hasVariants: bool = False


class Product(BaseModel):
    """Product model as stored in database."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(default_factory=generate_object_id, alias="_id")
    name: str = Field(..., min_length=1, max_length=500)
    sku: Optional[str] = None
    status: ProductStatus = ProductStatus.DRAFT
    stockQuantity: int = Field(default=0, ge=0)
    variantConfiguration: VariantConfiguration = Field(default_factory=VariantConfiguration)
    variants: list[Variant] = Field(default_factory=list)

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


class PreBuiltPC(BaseModel):
    """Prebuilt PC as stored in database."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_object_id, alias="_id")
    name: str = Field(..., min_length=1, max_length=500)
    stockQuantity: int = Field(default=0, ge=0)
    isActive: bool = True


class StockLine(BaseModel):
    """Outcome of reducing stock for one order line."""

    productId: str
    productType: str
    name: str
    quantity: int
    variantId: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def for_item(cls, item: OrderItem, error: Optional[str] = None) -> "StockLine":
        return cls(
            productId=item.product,
            productType=item.productType,
            name=item.name,
            quantity=item.quantity,
            variantId=item.variant_id,
            error=error,
        )


class StockReductionResults(BaseModel):
    """Per-line outcome of a stock reduction pass.

    ``rolledBack`` holds lines that were decremented and then reverted when a
    later line failed.
    """

    successful: list[StockLine] = Field(default_factory=list)
    failed: list[StockLine] = Field(default_factory=list)
    rolledBack: list[StockLine] = Field(default_factory=list)
    alreadyReduced: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed
