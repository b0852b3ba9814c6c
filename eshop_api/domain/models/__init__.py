"""Domain models for the e-shop API."""

from .entity import INTERNAL_FIELDS, EntityDescriptor, FieldSpec, Relation
from .user import ROLE_ADMIN, ROLE_USER, USER_ENTITY, Address

__all__ = [
    "Address",
    "EntityDescriptor",
    "FieldSpec",
    "INTERNAL_FIELDS",
    "Relation",
    "ROLE_ADMIN",
    "ROLE_USER",
    "USER_ENTITY",
]
