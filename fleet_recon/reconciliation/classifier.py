"""
Product Classifier - maps a transaction's product to an energy type.

The provider's product catalog is authoritative. When no active catalog
entry exists, the energy type is inferred from keywords in the product name.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    ClassificationSource,
    EnergyType,
    FinancialTransaction,
    ProductCatalogEntry,
)

logger = structlog.get_logger()


FUEL_KEYWORDS = (
    "gasolina", "gasoline", "petrol", "diesel", "diésel", "gasóleo", "gasoil",
    "fuel", "gas", "glp", "gnc", "lpg", "cng", "autogas", "efitec", "casco", "premium",
    "efi",
)

ELECTRIC_KEYWORDS = ("eléctric", "electric", "recarga", "charge", "kwh")


def infer_energy_type(product_name: Optional[str]) -> EnergyType:
    """
    Infer the energy type from a free-text product name.

    Fuel keywords are checked before electric ones; anything else
    (tolls, car wash, shop items) is OTHER.
    """
    if not product_name or not product_name.strip():
        return EnergyType.OTHER

    name_lower = product_name.lower()

    if any(keyword in name_lower for keyword in FUEL_KEYWORDS):
        return EnergyType.FUEL

    if any(keyword in name_lower for keyword in ELECTRIC_KEYWORDS):
        return EnergyType.ELECTRIC

    return EnergyType.OTHER


@dataclass
class Classification:
    """Energy type plus where it came from."""
    energy_type: EnergyType
    source: ClassificationSource
    catalog_entry_id: Optional[int] = None


class ProductClassifier:
    """
    Classifies transaction products as fuel, electric or other.

    Lookup order:
    1. Active catalog entry for the provider by exact product code
    2. Active catalog entry for the provider by case-insensitive name
    3. Keyword inference on the product name
    """

    async def find_catalog_entry(
        self,
        session: AsyncSession,
        provider_id: int,
        product_code: Optional[str] = None,
        product_name: Optional[str] = None,
    ) -> Optional[ProductCatalogEntry]:
        """Find the active catalog entry for a provider by code, then by name."""
        base = select(ProductCatalogEntry).where(
            ProductCatalogEntry.provider_id == provider_id,
            ProductCatalogEntry.is_active.is_(True),
        )

        if product_code and product_code.strip():
            result = await session.execute(
                base.where(ProductCatalogEntry.product_code == product_code.strip())
                .order_by(ProductCatalogEntry.id)
                .limit(1)
            )
            entry = result.scalars().first()
            if entry is not None:
                return entry

        if product_name and product_name.strip():
            result = await session.execute(
                base.where(
                    func.lower(ProductCatalogEntry.product_name)
                    == product_name.strip().lower()
                )
                .order_by(ProductCatalogEntry.id)
                .limit(1)
            )
            return result.scalars().first()

        return None

    async def explain(
        self,
        session: AsyncSession,
        provider_id: int,
        product_code: Optional[str],
        product_name: Optional[str],
    ) -> Classification:
        """Classify a product and report the source of the decision."""
        entry = await self.find_catalog_entry(
            session, provider_id, product_code, product_name
        )

        if entry is not None:
            return Classification(
                energy_type=EnergyType(entry.energy_type),
                source=ClassificationSource.CATALOG,
                catalog_entry_id=entry.id,
            )

        energy_type = infer_energy_type(product_name)
        logger.debug(
            "No catalog entry, inferred from name",
            provider_id=provider_id,
            product_code=product_code,
            product_name=product_name,
            energy_type=energy_type.value,
        )
        return Classification(
            energy_type=energy_type,
            source=ClassificationSource.KEYWORD,
        )

    async def classify(
        self,
        session: AsyncSession,
        provider_id: int,
        product_code: Optional[str],
        product_name: Optional[str],
    ) -> EnergyType:
        """Classify a product as fuel, electric or other."""
        classification = await self.explain(
            session, provider_id, product_code, product_name
        )
        return classification.energy_type

    async def classify_transaction(
        self,
        session: AsyncSession,
        transaction: FinancialTransaction,
    ) -> Classification:
        """Classify the product of a financial transaction."""
        return await self.explain(
            session,
            transaction.provider_id,
            transaction.product_code,
            transaction.product_name,
        )
