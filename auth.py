"""Bearer-token access control.

Every route's required capability is declared once in ``ROUTE_POLICY`` and
enforced by :func:`enforce_access_policy`, which the application installs
as a global dependency. Routes missing from the table require a verified
identity.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal, Optional, Protocol

import firebase_admin
from fastapi import Depends, Request
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError

from config import settings
from database import USERS, get_db
from errors import ForbiddenError, GatewayError, NotFoundError, UnauthorizedError

logger = logging.getLogger(__name__)

Capability = Literal["public", "verified", "admin"]

ROUTE_POLICY: dict[tuple[str, str], Capability] = {
    ("GET", "/"): "public",
    ("GET", "/health"): "public",
    ("GET", "/schema"): "public",
    # users
    ("GET", "/users"): "verified",
    ("GET", "/users/{email}"): "public",
    ("GET", "/users/{email}/role"): "verified",
    ("PUT", "/users/{email}/role"): "admin",
    ("PUT", "/users/{email}/fraud"): "admin",
    ("PUT", "/users/{email}"): "verified",
    ("POST", "/users"): "verified",
    ("DELETE", "/users/{email}"): "admin",
    # properties
    ("GET", "/properties"): "verified",
    ("GET", "/properties/{property_id}"): "verified",
    ("GET", "/properties/agent/{email}"): "verified",
    ("POST", "/properties"): "verified",
    ("PATCH", "/properties/{property_id}"): "verified",
    ("PATCH", "/properties/update/{property_id}"): "admin",
    ("PATCH", "/properties/verify/{property_id}"): "admin",
    ("PATCH", "/properties/reject/{property_id}"): "admin",
    ("DELETE", "/properties/{property_id}"): "verified",
    ("PATCH", "/advertise-property/{property_id}"): "verified",
    ("GET", "/advertised-properties"): "public",
    # wishlist
    ("GET", "/wishlist"): "verified",
    ("GET", "/wishlist/{entry_id}"): "verified",
    ("POST", "/wishlist"): "verified",
    ("DELETE", "/wishlist/{entry_id}"): "verified",
    # offers and payments
    ("GET", "/make-offer"): "verified",
    ("GET", "/make-offer/{offer_id}"): "verified",
    ("POST", "/make-offer"): "verified",
    ("PATCH", "/make-offer/{offer_id}"): "verified",
    ("DELETE", "/make-offer/{offer_id}"): "verified",
    ("PUT", "/offers/{offer_id}/accept"): "verified",
    ("PUT", "/offers/{offer_id}/reject"): "verified",
    ("GET", "/payment-history"): "verified",
    ("PUT", "/payment/{offer_id}/paid"): "verified",
    ("POST", "/create-payment-intent"): "public",
    # reviews
    ("GET", "/reviews"): "verified",
    ("GET", "/reviews/{email}"): "verified",
    ("GET", "/latest-review"): "public",
    ("POST", "/reviews"): "verified",
    ("DELETE", "/reviews/{review_id}"): "verified",
    # identity accounts
    ("DELETE", "/firebase-users/{uid}"): "admin",
}


@dataclass(frozen=True)
class Principal:
    uid: str
    email: Optional[str] = None


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> Principal: ...

    def delete_user(self, uid: str) -> None: ...


class FirebaseVerifier:
    """Verifies Firebase ID tokens with the Admin SDK."""

    def __init__(self, credentials_path: Optional[str] = None):
        self._credentials_path = credentials_path
        self._firebase_app: Optional[firebase_admin.App] = None

    @property
    def _app(self) -> firebase_admin.App:
        # initialised on first use so public routes never touch the SDK
        if self._firebase_app is None:
            try:
                self._firebase_app = firebase_admin.get_app()
            except ValueError:
                path = self._credentials_path
                cred = credentials.Certificate(path) if path else credentials.ApplicationDefault()
                self._firebase_app = firebase_admin.initialize_app(cred)
        return self._firebase_app

    def verify(self, token: str) -> Principal:
        try:
            decoded = firebase_auth.verify_id_token(token, app=self._app)
        except (ValueError, FirebaseError) as exc:
            logger.warning("Rejected identity token: %s", exc)
            raise ForbiddenError("Forbidden access") from exc
        return Principal(uid=decoded["uid"], email=decoded.get("email"))

    def delete_user(self, uid: str) -> None:
        try:
            firebase_auth.delete_user(uid, app=self._app)
        except firebase_auth.UserNotFoundError as exc:
            raise NotFoundError(f"Identity account not found: {uid}") from exc
        except (ValueError, FirebaseError) as exc:
            logger.exception("Identity account deletion failed for %s", uid)
            raise GatewayError(str(exc)) from exc


@lru_cache
def get_identity_verifier() -> IdentityVerifier:
    return FirebaseVerifier(settings.firebase_credentials)


def bearer_token(header: Optional[str]) -> str:
    if not header:
        raise UnauthorizedError("unauthorized access")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("unauthorized access")
    return token.strip()


def required_capability(method: str, path: str) -> Capability:
    return ROUTE_POLICY.get((method, path), "verified")


def is_admin(db, principal: Principal) -> bool:
    if not principal.email:
        return False
    user = db[USERS].find_one({"email": principal.email})
    return bool(user) and user.get("role") == "admin"


def enforce_access_policy(
    request: Request,
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> Optional[Principal]:
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    capability = required_capability(request.method, path)
    request.state.principal = None
    if capability == "public":
        return None

    principal = verifier.verify(bearer_token(request.headers.get("Authorization")))
    if capability == "admin" and not is_admin(get_db(), principal):
        raise ForbiddenError("Admin access required")
    request.state.principal = principal
    return principal


def current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise UnauthorizedError("unauthorized access")
    return principal
