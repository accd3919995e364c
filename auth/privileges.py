"""
auth/privileges.py -- Capability bit flags, rank entitlement, and capping.

Privileges is an IntFlag: union (|), intersection (&) and difference
(a & ~b) behave like plain integers, and values read back from the DB can be
wrapped with Privileges(int) without losing unknown bits.

Entitlement policy: each capability has a minimum rank. A rank's entitlement
is the union of every capability whose minimum rank it meets, so entitlement
only grows with rank. A token's mask is always requested & entitlement(rank)
-- see cap_privileges().

Display names are a fixed table, not the enum member names, so the text of
"missing privileges" messages stays stable if a member is renamed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from enum import IntEnum, IntFlag


class Rank(IntEnum):
    """Ordinal trust tier of a principal."""

    NONE = 0
    USER = 1
    SUPPORTER = 2
    DEVELOPER = 3
    ADMIN = 4


class Privileges(IntFlag):
    READ_CONFIDENTIAL = 1 << 0
    WRITE = 1 << 1
    MANAGE_BADGES = 1 << 2
    BETA_KEYS = 1 << 3
    MANAGE_SETTINGS = 1 << 4
    VIEW_USER_ADVANCED = 1 << 5
    MANAGE_USER = 1 << 6
    MANAGE_ROLES = 1 << 7
    MANAGE_API_KEYS = 1 << 8
    BLOG = 1 << 9
    API_META = 1 << 10


# (capability, display name, minimum rank) in bit order.
_POLICY: tuple[tuple[Privileges, str, Rank], ...] = (
    (Privileges.READ_CONFIDENTIAL, "ReadConfidential", Rank.USER),
    (Privileges.WRITE, "Write", Rank.USER),
    (Privileges.MANAGE_BADGES, "ManageBadges", Rank.DEVELOPER),
    (Privileges.BETA_KEYS, "BetaKeys", Rank.DEVELOPER),
    (Privileges.MANAGE_SETTINGS, "ManageSettings", Rank.ADMIN),
    (Privileges.VIEW_USER_ADVANCED, "ViewUserAdvanced", Rank.ADMIN),
    (Privileges.MANAGE_USER, "ManageUser", Rank.ADMIN),
    (Privileges.MANAGE_ROLES, "ManageRoles", Rank.ADMIN),
    (Privileges.MANAGE_API_KEYS, "ManageAPIKeys", Rank.ADMIN),
    (Privileges.BLOG, "Blog", Rank.DEVELOPER),
    (Privileges.API_META, "APIMeta", Rank.ADMIN),
)

NO_PRIVILEGES = Privileges(0)

ALL_PRIVILEGES = Privileges(0)
for _bit, _name, _rank in _POLICY:
    ALL_PRIVILEGES |= _bit
del _bit, _name, _rank


def entitlement(rank: int) -> Privileges:
    """Return the full mask a principal of the given rank may hold."""
    mask = NO_PRIVILEGES
    for bit, _name, min_rank in _POLICY:
        if rank >= min_rank:
            mask |= bit
    return mask


def cap_privileges(requested: int, rank: int) -> Privileges:
    """Clamp a client-requested mask to what the rank entitles.

    Bits outside the known capability set are dropped along with anything
    the rank does not qualify for.
    """
    return Privileges(requested & entitlement(rank))


def missing_privileges(held: int, required: int) -> Privileges:
    """Return the required bits that are not present in held."""
    return Privileges(required & ~held & ALL_PRIVILEGES)


def privilege_names(mask: int) -> list[str]:
    """Return display names of the known capabilities in mask, in bit order."""
    return [name for bit, name, _rank in _POLICY if mask & bit]


def describe(mask: int) -> str:
    """Render mask as a comma-separated list of display names."""
    return ", ".join(privilege_names(mask))
