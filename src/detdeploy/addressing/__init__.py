"""Salt strategies and deterministic address derivation."""

from detdeploy.addressing.derivation import (
    CREATEX_ADDRESS,
    AddressDeriver,
    derive,
    derive_for,
    guard_salt,
)
from detdeploy.addressing.salt import (
    DefaultSalt,
    ExplicitSalt,
    PermissionedSalt,
    SaltStrategy,
    VersionedSalt,
    compute_salt,
    strategy_from_name,
)

__all__ = [
    "CREATEX_ADDRESS",
    "AddressDeriver",
    "DefaultSalt",
    "ExplicitSalt",
    "PermissionedSalt",
    "SaltStrategy",
    "VersionedSalt",
    "compute_salt",
    "derive",
    "derive_for",
    "guard_salt",
    "strategy_from_name",
]
