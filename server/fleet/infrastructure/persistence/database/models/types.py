from __future__ import annotations
"""server/fleet/infrastructure/persistence/database/models/types.py
~~~~~~~~~~~~~~~~~~~~~~~~
Types portables Postgres / SQLite.
"""
import sqlalchemy as sa


class JSONPortable(sa.types.TypeDecorator):
    """JSONB sur Postgres, JSON ailleurs (les opérateurs JSON restent ceux de sa.JSON)."""
    impl = sa.JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        # none_as_null doit suivre : None -> NULL SQL, pas le littéral JSON 'null'
        none_as_null = self.impl.none_as_null
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import JSONB
            return dialect.type_descriptor(JSONB(none_as_null=none_as_null, astext_type=sa.Text()))
        return dialect.type_descriptor(sa.JSON(none_as_null=none_as_null))


class TstzPortable(sa.types.TypeDecorator):
    """TIMESTAMPTZ sur Postgres, DateTime() ailleurs."""
    impl = sa.DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(sa.TIMESTAMP(timezone=True))
        return dialect.type_descriptor(sa.DateTime())
