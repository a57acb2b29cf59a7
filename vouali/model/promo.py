from __future__ import annotations
import logging
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFound, storage_failure
from ..infra.sql import GatedAsyncSession

logger = logging.getLogger(__name__)


async def delete_media(
    gs: GatedAsyncSession, card_id: str, media_id: str
) -> Dict[str, Any]:
    # media ids are unique on their own; card_id only addresses the route
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                res = await db.execute(
                    text("DELETE FROM promo_card_media WHERE id = :id"),
                    {"id": media_id},
                )
    except SQLAlchemyError as e:
        logger.error("delete media %s failed", media_id, exc_info=True)
        raise storage_failure("error deleting media", e) from e

    if res.rowcount == 0:
        raise NotFound("media not found", details=f"id: {media_id}")
    logger.info("promo media deleted",
                extra={"card_id": card_id, "media_id": media_id})
    return {"success": True}


async def list_media(gs: GatedAsyncSession, card_id: str) -> List[Dict[str, Any]]:
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                card = (await db.execute(
                    text("SELECT id FROM promo_cards WHERE id = :id"),
                    {"id": card_id},
                )).first()
                if card is None:
                    raise NotFound("card not found", details=f"id: {card_id}")
                rows = (await db.execute(
                    text("""
                        SELECT id, promo_card_id, media_url, media_type,
                               display_order
                        FROM promo_card_media
                        WHERE promo_card_id = :id
                        ORDER BY display_order ASC
                    """),
                    {"id": card_id},
                )).mappings().all()
    except SQLAlchemyError as e:
        raise storage_failure("error listing media", e) from e

    return [{
        "id": r["id"],
        "promoCardId": r["promo_card_id"],
        "mediaUrl": r["media_url"],
        "mediaType": r["media_type"],
        "displayOrder": int(r["display_order"]),
    } for r in rows]
