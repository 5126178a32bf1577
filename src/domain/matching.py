"""
Driver / cab-type matching
==========================

Driver records carry their vehicle type as a cab-type id, a free-text
name, or both.  Every reference is normalised to one canonical name by
``resolve_vehicle_type``.

References are tried in order:

1. ``ById``   -- look the id up in the cab-type map.
2. ``ByName`` -- the literal name recorded on the driver.

A driver is compatible when any of its references names the booking's
cab type, so a stale id does not hide a matching recorded name.
``driver_vehicle_type`` (the single name shown for a driver) takes the
first one that resolves.  Cab-type compatibility is a hard constraint: an
unresolvable driver never matches.

Complexity: O(D) for ``find_candidates`` over D drivers.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from .entities import Booking, ById, ByName, CabType, Driver, VehicleTypeRef
from .enums import DriverStatus


def normalise(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    name = name.strip().casefold()
    return name or None


def resolve_vehicle_type(
    ref: VehicleTypeRef, cab_types: Mapping[int, CabType]
) -> Optional[str]:
    """Canonical name for a single reference, or ``None``."""
    if isinstance(ref, ById):
        cab_type = cab_types.get(ref.cab_type_id)
        return normalise(cab_type.name) if cab_type else None
    if isinstance(ref, ByName):
        return normalise(ref.name)
    raise TypeError(f"Unknown vehicle type reference: {ref!r}")


def driver_vehicle_type(
    driver: Driver, cab_types: Mapping[int, CabType]
) -> Optional[str]:
    for ref in driver.vehicle_types:
        name = resolve_vehicle_type(ref, cab_types)
        if name is not None:
            return name
    return None


def booking_vehicle_type(
    booking: Booking, cab_types: Mapping[int, CabType]
) -> Optional[str]:
    if booking.cab_type_id is None:
        return None
    return resolve_vehicle_type(ById(booking.cab_type_id), cab_types)


def is_compatible(
    booking: Booking, driver: Driver, cab_types: Mapping[int, CabType]
) -> bool:
    wanted = booking_vehicle_type(booking, cab_types)
    if wanted is None:
        return False
    return any(
        resolve_vehicle_type(ref, cab_types) == wanted for ref in driver.vehicle_types
    )


def find_candidates(
    booking: Booking,
    drivers: Iterable[Driver],
    cab_types: Mapping[int, CabType],
) -> list[Driver]:
    """
    Available drivers compatible with the booking's cab type.

    Best rated first; ties go to the driver with fewer rides, then lower id.
    An empty list means nobody fits -- not an error.
    """
    matches = [
        d
        for d in drivers
        if d.status == DriverStatus.AVAILABLE and is_compatible(booking, d, cab_types)
    ]
    matches.sort(key=lambda d: (-d.rating, d.total_rides, d.id or 0))
    return matches
