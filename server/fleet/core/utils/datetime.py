# server/fleet/core/utils/datetime.py
"""server/fleet/core/utils/datetime.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Utilitaires pour la gestion des dates et heures.

Les horodatages des entrées embarquées (QuickChecks, évènements, alarmes) sont
stockés en texte ISO-8601 UTC à largeur fixe (`2024-05-01T08:00:00.000000Z`) :
l'ordre lexicographique est alors l'ordre chronologique, ce qui permet de trier
et filtrer directement dans le pipeline SQL.
"""

from datetime import date, datetime, timezone
from typing import Optional

_ISO_FMT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt_val: datetime) -> datetime:
    """
    Normalise un datetime en UTC timezone-aware.
    - si naïf: on suppose UTC
    - sinon: conversion UTC
    """
    if dt_val.tzinfo is None:
        return dt_val.replace(tzinfo=timezone.utc)
    return dt_val.astimezone(timezone.utc)


def to_iso(dt_val: Optional[datetime]) -> Optional[str]:
    """datetime -> texte ISO UTC triable (None toléré)."""
    if dt_val is None:
        return None
    return as_utc(dt_val).strftime(_ISO_FMT)


def from_iso(raw: Optional[str]) -> Optional[datetime]:
    """Inverse de `to_iso` ; accepte aussi un ISO "libre" (offset, sans microsecondes)."""
    if not raw:
        return None
    try:
        return datetime.strptime(raw, _ISO_FMT).replace(tzinfo=timezone.utc)
    except ValueError:
        return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


def day_bound(d: date | datetime, *, end: bool = False) -> str:
    """
    Borne de filtre : une `date` seule couvre toute la journée (00:00 → 23:59:59.999999).
    """
    if isinstance(d, datetime):
        return to_iso(d)
    if end:
        return f"{d.isoformat()}T23:59:59.999999Z"
    return f"{d.isoformat()}T00:00:00.000000Z"
