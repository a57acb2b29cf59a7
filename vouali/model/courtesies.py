from __future__ import annotations
import logging
from typing import Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import storage_failure
from ..infra.sql import GatedAsyncSession

logger = logging.getLogger(__name__)


async def purge_all_courtesies(gs: GatedAsyncSession) -> Dict[str, int]:
    """
    Delete every courtesy and all of its items. Irreversible; any
    confirmation step belongs to the caller.
    """
    db = gs.session
    try:
        async with gs.gated():
            async with db.begin():
                items = await db.execute(text("DELETE FROM courtesy_items"))
                courtesies = await db.execute(text("DELETE FROM courtesies"))
    except SQLAlchemyError as e:
        logger.error("purge courtesies failed", exc_info=True)
        raise storage_failure("error purging courtesies", e) from e

    result = {
        "itemsDeleted": items.rowcount,
        "courtesiesDeleted": courtesies.rowcount,
    }
    logger.warning("courtesies purged", extra=result)
    return result
