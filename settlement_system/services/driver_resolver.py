# settlement_system/services/driver_resolver.py
"""
Driver resolver - maps a platform reference key (UUID, email, card, OBU tag, plate) to a driver.
"""
from typing import Dict, Iterable, List, Optional, Tuple, Union
from sqlalchemy.orm import Session
import logging
import re

from models import Driver
from settlement_system.config.rates import Platform, PLATE_FALLBACK_PLATFORMS

logger = logging.getLogger(__name__)

# Driver column holding each platform's integration key
PLATFORM_KEY_FIELDS = {
    Platform.UBER: "uberKey",
    Platform.BOLT: "boltKey",
    Platform.MYPRIO: "myprioCard",
    Platform.VIAVERDE: "viaverdeKey",
}

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def normalizeKey(value) -> str:
    """Trim and case-fold."""
    if value is None:
        return ""
    return str(value).strip().casefold()


def normalizePlate(value) -> str:
    """Uppercase and strip everything but letters and digits ("aa-12-bb" -> "AA12BB")."""
    if value is None:
        return ""
    return _NON_ALNUM.sub("", str(value).strip().upper())


def toPlatform(platform: Union[Platform, str]) -> Platform:
    if isinstance(platform, Platform):
        return platform
    return Platform(normalizeKey(platform))


class DriverResolver:
    """
    In-memory index of active drivers built once per import.

    Ambiguous keys resolve to the lowest driverID; every ambiguity is
    recorded in `warnings` (once per key) and logged.
    """

    def __init__(self, drivers: Iterable[Driver]):
        self.warnings: List[str] = []
        self._reported = set()
        self._keyIndex: Dict[Platform, Dict[str, List[int]]] = {platform: {} for platform in Platform}
        self._plateIndex: Dict[str, List[int]] = {}

        activeDrivers = sorted(
            (driver for driver in drivers if driver.isActive),
            key=lambda driver: driver.driverID
        )

        for driver in activeDrivers:
            for platform, fieldName in PLATFORM_KEY_FIELDS.items():
                key = normalizeKey(getattr(driver, fieldName))
                if key:
                    self._keyIndex[platform].setdefault(key, []).append(driver.driverID)

            plate = normalizePlate(driver.vehiclePlate)
            if plate:
                self._plateIndex.setdefault(plate, []).append(driver.driverID)

        logger.debug(f"Driver resolver indexed {len(activeDrivers)} active drivers")

    @classmethod
    def fromSession(cls, session: Session) -> "DriverResolver":
        drivers = session.query(Driver).filter(Driver.status == "active").order_by(Driver.driverID).all()
        return cls(drivers)

    def _pick(self, platform: Platform, kind: str, key: str, matches: List[int]) -> int:
        if len(matches) > 1 and (platform, kind, key) not in self._reported:
            self._reported.add((platform, kind, key))
            message = (f"Ambiguous {platform.value} {kind} '{key}' matches drivers "
                       f"{matches}; using {matches[0]}")
            self.warnings.append(message)
            logger.warning(message)
        return matches[0]

    def resolve(self, platform: Union[Platform, str], referenceKey,
                plate: Optional[str] = None) -> Optional[int]:
        """Return the driverID for a raw reference key, or None when nothing matches."""
        platform = toPlatform(platform)

        key = normalizeKey(referenceKey)
        if key:
            matches = self._keyIndex[platform].get(key)
            if matches:
                return self._pick(platform, "key", key, matches)

        if platform not in PLATE_FALLBACK_PLATFORMS:
            return None

        # Fuel and toll exports often carry only the vehicle plate
        for candidate in (plate, referenceKey):
            normalized = normalizePlate(candidate)
            if normalized and normalized in self._plateIndex:
                return self._pick(platform, "plate", normalized, self._plateIndex[normalized])

        return None

    def resolveWithReason(self, platform: Union[Platform, str], referenceKey,
                          plate: Optional[str] = None) -> Tuple[Optional[int], str]:
        driverId = self.resolve(platform, referenceKey, plate)
        if driverId is not None:
            return driverId, "matched"
        if not normalizeKey(referenceKey) and not normalizePlate(plate):
            return None, "empty key"
        return None, "no driver matches key"
