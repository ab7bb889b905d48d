# ==============================================================================
# REPOSITORIO DE PROMOCIONES Y TARJETAS DE REGALO
# ==============================================================================
# promotions.json -> {"<id>": {...}}   (IPromotionCatalog, solo lectura)
# gift_cards.json -> {"<numero>": {...}} (IGiftCardService)
# ==============================================================================

import os
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog

from pos_engine.models import GiftCard, Promotion, money_str, to_decimal
from pos_engine.repositories.base import DictRepository

logger = structlog.get_logger(__name__)


class PromotionRepository(DictRepository):
    """
    Catálogo de promociones.

    Formato de datos en promotions.json:
    {
        "promo-1": {
            "id": "promo-1", "code": "WELCOME10", "kind": "percentage",
            "value": "10", "min_amount": "1000.00", "max_discount": "500.00",
            "valid_until": null, "is_active": true
        }
    }
    """

    collaborator = 'promotions'

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'promotions.json'))

    async def find_by_code(self, code: str) -> Optional[Promotion]:
        promotions = await self.run_io(self.get_all)
        for promo_id, data in promotions.items():
            promotion = Promotion.from_dict({**data, 'id': promo_id})
            if promotion.matches(code):
                return promotion
        return None

    def save_promotion(self, promotion: Promotion) -> None:
        self.update(promotion.id, promotion.to_dict())


class GiftCardRepository(DictRepository):
    """
    Tarjetas de regalo.

    Formato de datos en gift_cards.json:
    {"GC-1000": {"number": "GC-1000", "balance": "500.00", "is_active": true}}
    """

    collaborator = 'gift_cards'

    def __init__(self, base_path: str):
        super().__init__(os.path.join(base_path, 'gift_cards.json'))

    async def get_card(self, number: str) -> Optional[GiftCard]:
        data = await self.run_io(self.get_by_id, number)
        return GiftCard.from_dict({**data, 'number': number}) if data else None

    async def redeem(self, number: str, amount: Decimal, reference: str) -> bool:
        def _redeem(data: Dict[str, Any]) -> bool:
            card = data.get(str(number))
            if card is None:
                return False
            balance = to_decimal(card.get('balance', 0))
            if amount > balance:
                return False
            card['balance'] = money_str(balance - amount)
            card.setdefault('redemptions', []).append({
                'amount': money_str(amount),
                'reference': reference,
            })
            return True

        redeemed = await self.run_io(self.mutate, _redeem)
        logger.debug("gift_card_redeem", number=number, amount=str(amount), ok=redeemed)
        return redeemed

    def save_card(self, card: GiftCard) -> None:
        self.update(card.number, card.to_dict())
