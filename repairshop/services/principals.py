"""Legacy principals: privileged users without a shop_id block their role's ownership
constraint until they are assigned one."""
from __future__ import annotations

from sqlalchemy.orm import Session

from repairshop.models.shop import Shop
from repairshop.models.user import User, UserRole
from repairshop.tenancy.policy import PRIVILEGED_ROLES, check_shop_id_transition


def find_unassigned(db: Session, role: str | None = None) -> list[User]:
    roles = [role] if role else list(PRIVILEGED_ROLES)
    return (
        db.query(User)
        .filter(User.role.in_([UserRole(r) for r in roles]), User.shop_id.is_(None))
        .order_by(User.id)
        .all()
    )


def assign_shop(db: Session, user_id: int, shop_id: int) -> User:
    """Initial shop assignment (NULL -> shop). Raises ShopIdImmutableError when the user
    already belongs to another shop, LookupError when the user or shop does not exist.
    Commit remains with caller."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise LookupError(f"User {user_id} not found")
    if not db.query(Shop.id).filter(Shop.id == shop_id).first():
        raise LookupError(f"Shop {shop_id} not found")
    check_shop_id_transition(user.shop_id, shop_id)
    user.shop_id = shop_id
    db.flush()
    return user
