# Overview: Invoice number allocation per site code and year.

from __future__ import annotations

import logging
import re

from sqlalchemy import update

from ..errors import NotFoundError
from ..extensions import db
from ..models import Invoice, InvoiceSequence, Site
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 5


def site_code(site_name: str) -> str:
    """'Kigali Central' -> 'KIGALI_CENTRAL'"""
    return re.sub(r"\s+", "_", site_name.strip()).upper()


def invoice_prefix(site_name: str, year: int) -> str:
    return f"INV-{site_code(site_name)}-{year}-"


class SequenceAllocator:
    """
    Hands out invoice sequence values keyed by number prefix (site code + year).

    LOCKING DISCIPLINE:
    1. Lock the site row (SELECT ... FOR UPDATE; a no-op on SQLite).
    2. Bump the InvoiceSequence row for the prefix with a single atomic
       UPDATE. The UPDATE takes the write lock on every backend, so two
       allocators for the same prefix can never read the same value.
    3. First use of a prefix seeds the counter from the highest invoice
       number already issued with it. Two concurrent seeds collide on the
       prefix unique constraint; the caller retries.

    The counter belongs to the prefix, not the site: sites whose names
    normalise to the same code draw from one counter.

    allocate() never commits. The value is only consumed if the caller's
    transaction (which also inserts the invoice) commits, so a rollback
    returns the number and no gap appears.
    """

    def __init__(self, *, width: int = DEFAULT_WIDTH):
        self.width = width

    def allocate(self, site_id: int, year: int) -> int:
        site = lock_for_update(db.session.query(Site).filter_by(id=site_id)).first()
        if site is None:
            raise NotFoundError(f"Site {site_id} not found")

        prefix = invoice_prefix(site.name, year)
        stmt = (
            update(InvoiceSequence)
            .where(InvoiceSequence.prefix == prefix)
            .values(last_value=InvoiceSequence.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount:
            value = (
                db.session.query(InvoiceSequence.last_value)
                .filter_by(prefix=prefix)
                .scalar()
            )
        else:
            value = self._highest_issued(prefix) + 1
            db.session.add(InvoiceSequence(prefix=prefix, year=year, last_value=value))
            db.session.flush()
            logger.info("Seeded invoice sequence %s at %s", prefix, value)
        return value

    def format(self, site_name: str, year: int, value: int) -> str:
        return f"{invoice_prefix(site_name, year)}{value:0{self.width}d}"

    def next_number(self, site_id: int, year: int) -> str:
        """Allocate and format in one step: INV-<SITE>-<YYYY>-<seq>."""
        value = self.allocate(site_id, year)
        site = db.session.get(Site, site_id)
        return self.format(site.name, year, value)

    def _highest_issued(self, prefix: str) -> int:
        numbers = (
            db.session.query(Invoice.invoice_number)
            .filter(Invoice.invoice_number.like(f"{prefix}%"))
            .all()
        )
        highest = 0
        for (number,) in numbers:
            # LIKE treats "_" in the site code as a wildcard
            if not number.startswith(prefix):
                continue
            tail = number[len(prefix):]
            if tail.isdigit():
                highest = max(highest, int(tail))
        return highest
