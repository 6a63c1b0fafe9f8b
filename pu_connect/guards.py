"""
Session Guard Decorators.

Factories producing decorators that gate service-layer functions behind
an authenticated session and, optionally, a set of profile roles.

Usage::

    from pu_connect.auth import SessionManager
    from pu_connect.guards import require_auth, require_role
    from pu_connect.models.enums import UserRole

    session = SessionManager()

    @require_auth(session)
    def list_my_orders() -> list[dict]:
        ...

    @require_role(session, UserRole.ADMIN, UserRole.SUPER_ADMIN)
    def suspend_member(member_id: str) -> None:
        ...
"""

from __future__ import annotations

from functools import wraps
from typing import Callable, Optional, ParamSpec, TypeVar

from pu_connect.auth import SessionManager
from pu_connect.models.enums import UserRole

P = ParamSpec("P")
R = TypeVar("R")

# Where a member lands after signing in, by role.
LANDING_ROUTES: dict[UserRole, str] = {
    UserRole.ADMIN: "/admin",
    UserRole.SUPER_ADMIN: "/admin",
    UserRole.NEWS_PUBLISHER: "/publisher",
    UserRole.SELLER: "/seller/dashboard",
    UserRole.BUYER: "/marketplace",
}

DEFAULT_LANDING_ROUTE: str = "/marketplace"


class AuthenticationError(RuntimeError):
    """Raised when a guarded function is called without an active session."""


class AuthorizationError(RuntimeError):
    """Raised when the signed-in member's role is not allowed."""


def require_auth(session: SessionManager) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Return a decorator that enforces authentication via *session*.

    The returned decorator checks ``session.is_authenticated`` before
    every call to the wrapped function.  If no user is logged in, an
    :class:`AuthenticationError` is raised.

    Args:
        session: The injectable ``SessionManager`` that holds the
            current user state.

    Returns:
        A decorator suitable for wrapping service-layer callables.
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if not session.is_authenticated:
                raise AuthenticationError(
                    "Authentication required. Please sign in before "
                    "performing this action."
                )
            return func(*args, **kwargs)

        return wrapper

    return decorator


def require_role(
    session: SessionManager,
    *roles: UserRole,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Return a decorator allowing only members holding one of *roles*.

    The role is read from the resolved profile.  A session whose profile
    could not be resolved is treated as having no role.

    Raises (from the wrapped call):
        AuthenticationError: No active session.
        AuthorizationError: Profile missing or role not in *roles*.
    """
    allowed = frozenset(roles)

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if not session.is_authenticated:
                raise AuthenticationError(
                    "Authentication required. Please sign in before "
                    "performing this action."
                )
            profile = session.profile
            if profile is None or profile.role not in allowed:
                raise AuthorizationError(
                    "You do not have permission to perform this action."
                )
            return func(*args, **kwargs)

        return wrapper

    return decorator


def landing_route_for(role: Optional[UserRole]) -> str:
    """Return the route a member with *role* is sent to after sign-in."""
    if role is None:
        return DEFAULT_LANDING_ROUTE
    return LANDING_ROUTES.get(role, DEFAULT_LANDING_ROUTE)
