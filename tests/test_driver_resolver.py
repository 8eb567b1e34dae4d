from models import Driver
from settlement_system.config.rates import Platform
from settlement_system.services.driver_resolver import DriverResolver, normalizePlate


def _driver(driver_id, **fields):
    fields.setdefault("status", "active")
    return Driver(driverID=driver_id, name=f"Driver {driver_id}", **fields)


def test_key_match_is_trimmed_and_case_insensitive():
    resolver = DriverResolver([
        _driver(1, uberKey="5F1C-AB"),
        _driver(2, boltKey="Ana.Silva@Example.com"),
    ])

    assert resolver.resolve(Platform.UBER, "  5f1c-ab ") == 1
    assert resolver.resolve("bolt", "ana.silva@example.com") == 2
    assert resolver.resolve("bolt", "nobody@example.com") is None


def test_plate_fallback_only_for_fuel_and_tolls():
    resolver = DriverResolver([_driver(3, vehiclePlate="AA-12-BB")])

    assert resolver.resolve(Platform.MYPRIO, "unknown card", plate="aa 12 bb") == 3
    assert resolver.resolve(Platform.VIAVERDE, "AA12BB") == 3
    assert resolver.resolve(Platform.UBER, "AA-12-BB") is None


def test_inactive_drivers_are_not_matched():
    resolver = DriverResolver([_driver(4, uberKey="x1", status="inactive")])

    assert resolver.resolve(Platform.UBER, "x1") is None


def test_ambiguous_key_picks_lowest_id_and_warns_once():
    resolver = DriverResolver([
        _driver(9, boltKey="shared@example.com"),
        _driver(5, boltKey="SHARED@example.com"),
    ])

    assert resolver.resolve(Platform.BOLT, "shared@example.com") == 5
    assert resolver.resolve(Platform.BOLT, "shared@example.com") == 5
    assert len(resolver.warnings) == 1
    assert "[5, 9]" in resolver.warnings[0]


def test_resolve_with_reason():
    resolver = DriverResolver([_driver(1, myprioCard="700123")])

    assert resolver.resolveWithReason(Platform.MYPRIO, "700123") == (1, "matched")
    assert resolver.resolveWithReason(Platform.MYPRIO, "  ") == (None, "empty key")
    assert resolver.resolveWithReason(Platform.MYPRIO, "999") == (None, "no driver matches key")


def test_normalize_plate():
    assert normalizePlate(" aa-12-bb ") == "AA12BB"
    assert normalizePlate(None) == ""
