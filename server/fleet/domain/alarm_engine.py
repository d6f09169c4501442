from __future__ import annotations
"""server/fleet/domain/alarm_engine.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Moteur d'alarmes de maintenance (modèle accumulateur).

Fonction principale :
    advance(alarm, delta_hours, now=..., meter_before=...) -> Result[AlarmAdvance]

Règles :
- accumulated' = accumulated + delta
- tant que accumulated' >= interval : un déclenchement, accumulated' -= interval,
  times_triggered += 1, last_triggered_at = now
- un gros delta (rattrapage du compteur) qui couvre plusieurs intervalles produit
  autant de déclenchements, jamais fusionnés en un seul
- une alarme inactive est gelée : ni l'accumulateur ni les compteurs ne bougent

Pur et déterministe : aucune I/O, aucune horloge lue ici (`now` est injecté).
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional, Sequence

from fleet.domain.errors import Result, invalid
from fleet.domain.records import MaintenanceAlarm


@dataclass(frozen=True)
class TriggerOutcome:
    """Un intervalle franchi ; devient un évènement système + des notifications."""
    alarm_id: str
    alarm_title: str
    interval_hours: float
    related_parts: tuple[str, ...]
    sequence: int              # 1..fired_count dans cet advance
    times_triggered: int       # valeur du compteur APRÈS ce déclenchement
    triggered_at: datetime
    crossed_at_hours: Optional[float] = None  # compteur machine au franchissement


@dataclass(frozen=True)
class AlarmAdvance:
    alarm: MaintenanceAlarm
    fired_count: int
    carry_remainder: float
    triggers: tuple[TriggerOutcome, ...] = ()


def would_fire(alarm: MaintenanceAlarm, delta_hours: float) -> bool:
    """Même condition que la boucle de `advance`, sans rien calculer d'autre."""
    return (
        alarm.is_active
        and alarm.interval_hours > 0
        and alarm.accumulated_hours + delta_hours >= alarm.interval_hours
    )


def advance(
    alarm: MaintenanceAlarm,
    delta_hours: float,
    *,
    now: datetime,
    meter_before: Optional[float] = None,
) -> Result[AlarmAdvance]:
    """
    Fait avancer l'accumulateur d'une alarme de `delta_hours`.

    `meter_before` (compteur machine avant le delta) est optionnel ; s'il est fourni,
    chaque déclenchement porte la valeur du compteur au moment du franchissement, ce
    qui permet d'ordonner les déclenchements de plusieurs alarmes entre eux.
    """
    if delta_hours is None or delta_hours < 0:
        return invalid("Operating hours delta must be >= 0", "delta_hours")

    if not alarm.is_active:
        return Result.success(
            AlarmAdvance(alarm=alarm, fired_count=0, carry_remainder=alarm.accumulated_hours)
        )

    if alarm.interval_hours <= 0:
        # donnée corrompue : boucler serait infini
        return invalid("interval must be > 0", "interval_hours")

    interval = alarm.interval_hours
    start = alarm.accumulated_hours
    accumulated = start + delta_hours
    times = alarm.times_triggered
    triggers: list[TriggerOutcome] = []

    while accumulated >= interval:
        accumulated -= interval
        times += 1
        seq = len(triggers) + 1
        crossed = None
        if meter_before is not None:
            crossed = meter_before + (seq * interval - start)
        triggers.append(
            TriggerOutcome(
                alarm_id=alarm.id,
                alarm_title=alarm.title,
                interval_hours=interval,
                related_parts=tuple(alarm.related_parts),
                sequence=seq,
                times_triggered=times,
                triggered_at=now,
                crossed_at_hours=crossed,
            )
        )

    if not triggers and delta_hours == 0:
        return Result.success(AlarmAdvance(alarm=alarm, fired_count=0, carry_remainder=start))

    changes: dict = {"accumulated_hours": accumulated, "updated_at": now}
    if triggers:
        changes.update(
            times_triggered=times,
            last_triggered_at=now,
            last_triggered_hours=triggers[-1].crossed_at_hours,
        )
    advanced = replace(alarm, **changes)
    return Result.success(
        AlarmAdvance(
            alarm=advanced,
            fired_count=len(triggers),
            carry_remainder=accumulated,
            triggers=tuple(triggers),
        )
    )


def advance_all(
    alarms: Sequence[MaintenanceAlarm],
    delta_hours: float,
    *,
    now: datetime,
    meter_before: Optional[float] = None,
) -> Result[tuple[list[MaintenanceAlarm], list[TriggerOutcome]]]:
    """
    Avance toutes les alarmes d'une machine depuis le même delta.
    Retourne (alarmes mises à jour dans l'ordre d'origine, déclenchements ordonnés).
    """
    updated: list[MaintenanceAlarm] = []
    advances: list[AlarmAdvance] = []
    for alarm in alarms:
        res = advance(alarm, delta_hours, now=now, meter_before=meter_before)
        if not res.ok:
            return Result.failure(res.error)
        updated.append(res.value.alarm)
        advances.append(res.value)
    return Result.success((updated, order_outcomes(advances)))


def order_outcomes(advances: Iterable[AlarmAdvance]) -> list[TriggerOutcome]:
    """
    Ordre d'émission : intervalle franchi le plus tôt d'abord.
    Sans compteur de référence, on garde l'ordre (alarme, séquence).
    Le tri est stable : à égalité, l'ordre des alarmes est conservé.
    """
    flat = [t for a in advances for t in a.triggers]
    if any(t.crossed_at_hours is None for t in flat):
        return flat
    return sorted(flat, key=lambda t: t.crossed_at_hours)
