"""
Document numbering — human-readable request numbers.

Format: ``{prefix}-{yy}-{NNN}``

    prefix  category's DocConfig prefix for the year; a new year inherits the
            prefix of the category's latest row, else DOC_NUMBER_DEFAULT_PREFIX
    yy      last two digits of (calendar year + DOC_NUMBER_YEAR_OFFSET)
    NNN     per-(category, year) running counter, zero-padded to 3 digits

Runs inside the caller's transaction.  The counter is bumped with a single
``UPDATE ... SET n = n + 1`` which holds the row lock until commit, so two
requests created concurrently in one category never share a number.  The
first request of a year inserts the counter row inside a savepoint; losing
that insert race to another transaction falls back to the winner's row.

Numbers are unique per category only: categories sharing the default prefix
all start at ``{prefix}-{yy}-001`` (see ``uq_it_request_category_number``).
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.models import db
from app.models.request import DocConfig

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "IT-F07"
DEFAULT_YEAR_OFFSET = 543


def document_year(when: datetime | None = None) -> int:
    when = when or datetime.now(timezone.utc)
    return when.year + int(current_app.config.get("DOC_NUMBER_YEAR_OFFSET", DEFAULT_YEAR_OFFSET))


def format_request_number(prefix: str, year: int, running_number: int) -> str:
    return f"{prefix}-{str(year)[-2:]}-{running_number:03d}"


def _inherited_prefix(category_id: int) -> str:
    latest = db.session.execute(
        select(DocConfig.prefix)
        .where(DocConfig.category_id == category_id)
        .order_by(DocConfig.year.desc())
        .limit(1)
    ).scalar()
    return latest or current_app.config.get("DOC_NUMBER_DEFAULT_PREFIX", DEFAULT_PREFIX)


def _get_or_create_config(category_id: int, year: int) -> DocConfig:
    config = DocConfig.query.filter_by(category_id=category_id, year=year).first()
    if config is not None:
        return config

    prefix = _inherited_prefix(category_id)
    try:
        with db.session.begin_nested():
            config = DocConfig(category_id=category_id, year=year, prefix=prefix, last_running_number=0)
            db.session.add(config)
    except IntegrityError:
        logger.info("DocConfig for category=%s year=%s created concurrently", category_id, year)
        config = DocConfig.query.filter_by(category_id=category_id, year=year).one()
    return config


def generate_request_number(category_id: int, when: datetime | None = None) -> str:
    """Allocate the next request number for *category_id*. Does not commit."""
    year = document_year(when)
    config = _get_or_create_config(category_id, year)

    db.session.execute(
        update(DocConfig)
        .where(DocConfig.id == config.id)
        .values(last_running_number=DocConfig.last_running_number + 1)
        .execution_options(synchronize_session=False)
    )
    running = db.session.execute(
        select(DocConfig.last_running_number).where(DocConfig.id == config.id)
    ).scalar_one()
    db.session.expire(config)

    number = format_request_number(config.prefix, year, running)
    logger.debug("Allocated request number %s", number)
    return number
