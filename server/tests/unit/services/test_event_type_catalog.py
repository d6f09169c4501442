# server/tests/unit/services/test_event_type_catalog.py
import pytest

from fleet.application.services.event_type_catalog import EventTypeCatalog, normalize_name
from fleet.domain.errors import NotFoundError, ValidationError

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Cambio de aceite", "cambio_de_aceite"),
        ("  Révision   générale ", "revision_generale"),
        ("Oil-change (full)!", "oilchange_full"),
        ("maintenance_alarm_triggered", "maintenance_alarm_triggered"),
        ("Ñandú 2", "nandu_2"),
    ],
)
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


def test_same_normalized_name_reuses_type_and_adds_language(Session):
    with Session() as s:
        catalog = EventTypeCatalog(s)
        first = catalog.resolve_or_create_type("Cambio de aceite", "es", created_by="u1").unwrap()
        again = catalog.resolve_or_create_type("cambio  DE aceite", "ES").unwrap()
        other_lang = catalog.resolve_or_create_type("Cambio de Aceite", "en").unwrap()
        s.commit()

    assert first == again == other_lang
    with Session() as s:
        row = EventTypeCatalog(s).get(first)
    assert row.name == "Cambio de aceite"
    assert row.languages == ["es", "en"]
    assert row.created_by == "u1"
    assert row.times_used == 0


@pytest.mark.parametrize(
    "name,language,field",
    [
        ("x", "es", "name"),
        ("y" * 101, "es", "name"),
        ("Oil", "esp", "language"),
        ("Oil", "1a", "language"),
        ("!!!", "es", "name"),
    ],
)
def test_invalid_input(Session, name, language, field):
    with Session() as s:
        res = EventTypeCatalog(s).resolve_or_create_type(name, language)
    assert isinstance(res.error, ValidationError)
    assert res.error.field == field


def test_require_active_and_usage(Session):
    with Session() as s:
        catalog = EventTypeCatalog(s)
        type_id = catalog.resolve_or_create_type("Repair", "en").unwrap()
        s.commit()
        assert catalog.require_active(type_id).ok
        assert isinstance(catalog.require_active("missing").error, NotFoundError)

        assert catalog.increment_usage(type_id, 3) is True
        assert catalog.increment_usage("missing") is False
        s.commit()

    with Session() as s:
        assert EventTypeCatalog(s).get(type_id).times_used == 3


def test_inactive_type_is_not_usable(Session):
    with Session() as s:
        catalog = EventTypeCatalog(s)
        type_id = catalog.resolve_or_create_type("Legacy", "en").unwrap()
        catalog.get(type_id).is_active = False
        s.commit()
        assert isinstance(catalog.require_active(type_id).error, NotFoundError)


def test_search_orders_by_popularity(Session):
    with Session() as s:
        catalog = EventTypeCatalog(s)
        oil = catalog.resolve_or_create_type("Oil change", "en").unwrap()
        filt = catalog.resolve_or_create_type("Oil filter", "en").unwrap()
        catalog.resolve_or_create_type("Tyres", "en").unwrap()
        s.commit()
        catalog.increment_usage(filt, 5)
        s.commit()

        found = catalog.search("oil")
        assert [t.id for t in found] == [filt, oil]
        assert len(catalog.search()) == 3
