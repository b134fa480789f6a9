"""Ledger persistence schema.

``metadata`` is the target for Alembic; sessions come from ``db.client``.
"""

from __future__ import annotations

from .models.ledger import Base, LedgerTransaction

metadata = Base.metadata

__all__ = ["Base", "LedgerTransaction", "metadata"]
