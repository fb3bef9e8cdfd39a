"""Persisted default summarizer provider.

Stored as a single row of the ``settings`` table. The value is read once
per call site and handed to the summary orchestrator explicitly.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from secfeed.core.datetime_utils import utc_now
from secfeed.core.logging import get_logger
from secfeed.models.setting import AppSetting
from secfeed.summarize.options import (
    DEFAULT_SUMMARIZER_OPTION,
    SummarizerOption,
    parse_summarizer_option,
)

logger = get_logger(__name__)

SUMMARIZER_SETTING_KEY = "summarizer_provider"


def coerce_summarizer_option(value: Any) -> SummarizerOption | None:
    """Read an option from a stored value: a bare tag, ``{"option": x}`` or ``{"value": x}``."""
    if isinstance(value, str):
        return parse_summarizer_option(value)
    if isinstance(value, dict):
        return parse_summarizer_option(value.get("option")) or parse_summarizer_option(
            value.get("value")
        )
    return None


async def get_default_provider(
    db: AsyncSession,
    fallback: SummarizerOption | str = DEFAULT_SUMMARIZER_OPTION,
) -> SummarizerOption:
    """
    Load the persisted default provider.

    Anything unreadable (missing row, unknown tag, store error) yields
    ``fallback``.
    """
    default = parse_summarizer_option(fallback) or DEFAULT_SUMMARIZER_OPTION

    try:
        result = await db.execute(
            select(AppSetting.value).where(AppSetting.key == SUMMARIZER_SETTING_KEY)
        )
        stored = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.bind(error=str(e)).warning("summarizer_option_load_failed")
        await db.rollback()
        return default

    return coerce_summarizer_option(stored) or default


async def set_default_provider(db: AsyncSession, option: SummarizerOption) -> SummarizerOption:
    """Upsert the default provider row and commit."""
    setting = await db.get(AppSetting, SUMMARIZER_SETTING_KEY)
    if setting is None:
        db.add(AppSetting(key=SUMMARIZER_SETTING_KEY, value={"option": option.value}))
    else:
        setting.value = {"option": option.value}
        setting.updated_at = utc_now()

    await db.commit()
    logger.bind(option=option.value).info("summarizer_option_saved")
    return option
