from __future__ import annotations
"""server/fleet/infrastructure/persistence/history_pipeline.py
~~~~~~~~~~~~~~~~~~~~~~~~
Pipeline SQL au-dessus des historiques embarqués (colonnes JSON de `machines`).

Étapes, toutes exécutées par la base dans UNE requête :
    ligne machine → dépliage du tableau JSON → filtres → tri
    (created_at DESC, position ASC) → total ∥ tranche de page

Dépliage selon le dialecte :
- SQLite     : json_each(col)                         (colonne `key` = position)
- PostgreSQL : jsonb_array_elements(col) WITH ORDINALITY

Le total et la page sortent du même instantané : le total est une
sous-requête scalaire, la page est jointe à gauche sur la ligne machine. Une
machine inconnue ne produit aucune ligne ; une page vide produit une ligne dont
l'entrée est NULL (le total reste disponible).
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import JSON, Integer, and_, column, func, or_, select, true
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import Select

from fleet.core.utils.datetime import day_bound
from fleet.domain.records import HistoryCollection
from fleet.infrastructure.persistence.database.models.machine import MachineDocument


@dataclass(frozen=True)
class QuickCheckFilter:
    result: Optional[str] = None
    executed_by_id: Optional[str] = None
    date_from: Optional[date | datetime] = None
    date_to: Optional[date | datetime] = None


@dataclass(frozen=True)
class EventFilter:
    type_id: Optional[str] = None
    is_system_generated: Optional[bool] = None
    date_from: Optional[date | datetime] = None
    date_to: Optional[date | datetime] = None
    search: Optional[str] = None


@dataclass(frozen=True)
class Unwound:
    """Table dérivée issue du dépliage : `value` (entrée JSON) + `position`."""
    value: Any
    position: Any
    source: Any


def _json_col(collection: HistoryCollection):
    return getattr(MachineDocument, collection.value)


def unwind(collection: HistoryCollection, dialect_name: str) -> Unwound:
    col = _json_col(collection)
    if dialect_name == "postgresql":
        elem = (
            func.jsonb_array_elements(col)
            .table_valued(column("value", JSONB), with_ordinality="position", name="elem")
            .render_derived()
        )
        return Unwound(value=elem.c.value, position=elem.c.position, source=elem)
    elem = func.json_each(col).table_valued(column("value", JSON), column("key", Integer), name="elem")
    return Unwound(value=elem.c.value, position=elem.c.key, source=elem)


def _field(value, name: str):
    return value[name].as_string()


def _date_predicates(value, date_from, date_to) -> list:
    out = []
    ts = _field(value, "created_at")
    if date_from is not None:
        out.append(ts >= day_bound(date_from))
    if date_to is not None:
        out.append(ts <= day_bound(date_to, end=True))
    return out


def filter_predicates(value, flt: QuickCheckFilter | EventFilter | None) -> list:
    """Traduit un filtre en prédicats SQL sur l'entrée dépliée."""
    if flt is None:
        return []
    preds: list = []
    if isinstance(flt, QuickCheckFilter):
        if flt.result is not None:
            preds.append(_field(value, "result") == flt.result)
        if flt.executed_by_id is not None:
            preds.append(_field(value, "executed_by_id") == flt.executed_by_id)
    else:
        if flt.type_id is not None:
            preds.append(_field(value, "type_id") == flt.type_id)
        if flt.is_system_generated is not None:
            preds.append(value["is_system_generated"].as_boolean() == bool(flt.is_system_generated))
        if flt.search:
            needle = flt.search.strip()
            if needle:
                preds.append(
                    or_(
                        _field(value, "title").icontains(needle, autoescape=True),
                        _field(value, "description").icontains(needle, autoescape=True),
                    )
                )
    preds.extend(_date_predicates(value, flt.date_from, flt.date_to))
    return preds


def filtered_rows(
    machine_id: str,
    collection: HistoryCollection,
    flt: QuickCheckFilter | EventFilter | None,
    dialect_name: str,
):
    """CTE `rows` : entrées filtrées de la machine + clés de tri."""
    u = unwind(collection, dialect_name)
    stmt = (
        select(
            u.value.label("entry"),
            _field(u.value, "created_at").label("sort_ts"),
            u.position.label("position"),
        )
        .select_from(MachineDocument)
        .join(u.source, true())
        .where(and_(MachineDocument.id == machine_id, *filter_predicates(u.value, flt)))
    )
    return stmt.cte("rows")


def page_statement(
    machine_id: str,
    collection: HistoryCollection,
    flt: QuickCheckFilter | EventFilter | None,
    *,
    page: int,
    limit: int,
    dialect_name: str,
) -> Select:
    """
    Colonnes du résultat : (machine_id, total, entry). Ordonné comme la page.
    """
    rows = filtered_rows(machine_id, collection, flt, dialect_name)
    total = select(func.count()).select_from(rows).scalar_subquery()
    sliced = (
        select(rows.c.entry, rows.c.sort_ts, rows.c.position)
        .order_by(rows.c.sort_ts.desc(), rows.c.position.asc())
        .limit(limit)
        .offset((page - 1) * limit)
        .subquery("page")
    )
    return (
        select(
            MachineDocument.id.label("machine_id"),
            total.label("total"),
            sliced.c.entry,
        )
        .select_from(MachineDocument)
        .outerjoin(sliced, true())
        .where(MachineDocument.id == machine_id)
        .order_by(sliced.c.sort_ts.desc(), sliced.c.position.asc())
    )


def count_statement(
    machine_id: str,
    collection: HistoryCollection,
    flt: QuickCheckFilter | EventFilter | None,
    dialect_name: str,
) -> Select:
    rows = filtered_rows(machine_id, collection, flt, dialect_name)
    return select(func.count()).select_from(rows)


def count_by_field_statement(
    machine_id: str,
    collection: HistoryCollection,
    field_name: str,
    dialect_name: str,
) -> Select:
    """Comptage groupé sur un champ de l'entrée (ex: type_id des évènements)."""
    u = unwind(collection, dialect_name)
    keys = (
        select(_field(u.value, field_name).label("key"))
        .select_from(MachineDocument)
        .join(u.source, true())
        .where(MachineDocument.id == machine_id)
        .subquery("keys")
    )
    return (
        select(keys.c.key, func.count().label("n"))
        .group_by(keys.c.key)
        .order_by(func.count().desc(), keys.c.key)
    )


def latest_statement(machine_id: str, collection: HistoryCollection) -> Select:
    """Élément 0 seulement (le plus récent), jamais le tableau entier."""
    col = _json_col(collection)
    return select(MachineDocument.id, col[0].label("entry")).where(MachineDocument.id == machine_id)
