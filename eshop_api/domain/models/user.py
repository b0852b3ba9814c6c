"""User document layout for client and admin accounts."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, EmailStr, Field

from ...core.security import hash_password
from ...core.utils import slugify
from .entity import EntityDescriptor, FieldSpec, Relation

UserRole = Literal["user", "admin"]
ROLE_USER = "user"
ROLE_ADMIN = "admin"


class Address(BaseModel):
    """Embedded shipping address."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    alias: Optional[str] = None
    details: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    is_default: bool = False


def _before_save(document: Dict[str, Any], changes: Mapping[str, Any]) -> None:
    if "password" in changes and changes["password"]:
        document["password"] = hash_password(changes["password"])
    if "name" in changes and changes["name"]:
        document["name"] = changes["name"].strip()
        document["slug"] = slugify(document["name"])
    if "email" in changes and changes["email"]:
        document["email"] = changes["email"].strip().lower()


USER_ENTITY = EntityDescriptor(
    name="user",
    collection="users",
    fields=(
        FieldSpec("name", str, required=True, searchable=True, constraints={"min_length": 1}),
        FieldSpec("slug", str, managed=True),
        FieldSpec("email", EmailStr, required=True, unique=True, searchable=True),
        FieldSpec("phone", Optional[str]),
        FieldSpec("password", str, required=True, hidden=True, constraints={"min_length": 6}),
        FieldSpec("password_changed_at", Optional[datetime], managed=True),
        FieldSpec("password_reset_code", Optional[str], hidden=True, managed=True),
        FieldSpec("password_reset_code_expires", Optional[datetime], hidden=True, managed=True),
        FieldSpec("password_reset_verified", Optional[bool], hidden=True, managed=True),
        FieldSpec("email_verification_code", Optional[str], hidden=True, managed=True),
        FieldSpec("email_verification_code_expires", Optional[datetime], hidden=True, managed=True),
        FieldSpec("email_verified", bool, hidden=True, managed=True, default=False),
        FieldSpec("delete_account_code", Optional[str], hidden=True, managed=True),
        FieldSpec("delete_account_code_expires", Optional[datetime], hidden=True, managed=True),
        FieldSpec("role", UserRole, default=ROLE_USER),
        FieldSpec("wishlist", List[str], default_factory=list),
        FieldSpec("addresses", List[Address], default_factory=list),
    ),
    relations=(Relation("wishlist", collection="products", many=True, on_one=True, on_all=False),),
    before_save=_before_save,
)
