"""
Chirpline Backend — Route Table
================================

What:  The fixed mapping from path prefix to route group, and the resolver
       that decides which group (if any) owns a path.
How:   Prefixes match on segment boundaries only: /api/auth owns /api/auth
       and /api/auth/login, never /api/authx. The longest matching prefix
       wins. The table is built once and never mutated.
Who:   create_app() mounts each group's router from the table, and the
       catch-all handler asks the table whether an unmatched path belongs
       to a group (404) or to the SPA fallback.
"""

from dataclasses import dataclass
from typing import Iterator, Mapping, Optional, Tuple

from fastapi import APIRouter

# name → prefix, in registration order
DEFAULT_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("auth", "/api/auth"),
    ("users", "/api/users"),
    ("posts", "/api/posts"),
    ("notifications", "/api/notifications"),
)


@dataclass(frozen=True)
class RouteGroup:
    """A collaborator-owned router mounted under one fixed prefix."""

    name: str
    prefix: str
    router: APIRouter

    def owns(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")


class RouteTable:
    """Immutable, ordered set of route groups."""

    def __init__(self, groups: Tuple[RouteGroup, ...]):
        prefixes = [group.prefix for group in groups]
        if len(set(prefixes)) != len(prefixes):
            raise ValueError(f"Duplicate route group prefix in {prefixes}")
        for prefix in prefixes:
            if not prefix.startswith("/") or prefix.endswith("/"):
                raise ValueError(f"Route group prefix must start and not end with '/': {prefix!r}")
        self._groups = tuple(groups)
        # Longest first so resolve() can stop at the first hit
        self._by_length = tuple(sorted(groups, key=lambda g: len(g.prefix), reverse=True))

    @classmethod
    def from_routers(cls, routers: Mapping[str, APIRouter]) -> "RouteTable":
        """
        Build the table for the standard groups from name → router.

        Raises:
            KeyError: a standard group has no router, or an unknown name
                      was supplied.
        """
        known = {name for name, _ in DEFAULT_PREFIXES}
        unknown = set(routers) - known
        if unknown:
            raise KeyError(f"Unknown route groups: {sorted(unknown)}")
        return cls(
            tuple(
                RouteGroup(name=name, prefix=prefix, router=routers[name])
                for name, prefix in DEFAULT_PREFIXES
            )
        )

    def __iter__(self) -> Iterator[RouteGroup]:
        return iter(self._groups)

    def __len__(self) -> int:
        return len(self._groups)

    def resolve(self, path: str) -> Optional[RouteGroup]:
        """Group owning path, or None when the path falls through to the SPA."""
        for group in self._by_length:
            if group.owns(path):
                return group
        return None
