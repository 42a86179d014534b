"""Topic visibility checks."""

from activity_digest.authz.authorizer import Authorizer, AuthzSource, CategoryAuthorizer
from activity_digest.authz.errors import AuthorizationLookupError


__all__ = [
    "AuthorizationLookupError",
    "Authorizer",
    "AuthzSource",
    "CategoryAuthorizer",
]
