"""Lookup of the database service account that owns MariaDB files."""
from __future__ import annotations

import grp
import pwd
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ServiceAccount:
    """UID/GID pair used when fixing ownership of managed directories."""

    name: str
    uid: int
    gid: int
    resolved: bool = True


def resolve_service_account(
    name: str = "mysql",
    group: str | None = None,
    *,
    fallback_uid: int = 992,
    fallback_gid: int = 991,
) -> ServiceAccount:
    """Return the account for *name* from the passwd/group databases.

    When the user does not exist the fallback IDs are returned with
    ``resolved=False``. An explicit *group* overrides the user's primary group
    when it exists.
    """
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        return ServiceAccount(name=name, uid=fallback_uid, gid=fallback_gid, resolved=False)

    gid = entry.pw_gid
    if group:
        try:
            gid = grp.getgrnam(group).gr_gid
        except KeyError:
            pass
    return ServiceAccount(name=name, uid=entry.pw_uid, gid=gid)


__all__ = ["ServiceAccount", "resolve_service_account"]
