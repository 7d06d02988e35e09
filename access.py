"""Role checks deciding which orders, users and products a caller may touch."""

from typing import Dict, Iterable, List, Optional, Tuple

from errors import AccessDeniedError
from schemas import AuthUser


def order_query_scope(user: AuthUser, customer_id: Optional[str] = None,
                      seller_id: Optional[str] = None) -> Tuple[Dict, Optional[str]]:
    """Translate list-query parameters into a store filter for `user`.

    Returns the filter plus a customer id that still has to be applied in
    memory: the store only filters sellers on `sellerId`, so a seller's
    `customerId` parameter is matched after the fetch.
    """
    if user.role == "seller":
        resolved = seller_id or user.id
        if resolved != user.id:
            raise AccessDeniedError()
        return {"sellerId": resolved}, customer_id
    if user.role == "customer":
        resolved = customer_id or user.id
        if resolved != user.id:
            raise AccessDeniedError()
        return {"customerId": resolved}, None
    if user.role == "admin":
        if seller_id:
            return {"sellerId": seller_id}, None
        if customer_id:
            return {"customerId": customer_id}, None
        return {}, None
    raise AccessDeniedError()


def can_view_order(user: AuthUser, order: dict) -> bool:
    if user.role == "admin":
        return True
    if user.role == "seller":
        return order.get("sellerId") == user.id
    if user.role == "customer":
        return order.get("customerId") == user.id
    return False


def filter_visible_orders(user: AuthUser, orders: Iterable[dict],
                          customer_id: Optional[str] = None) -> List[dict]:
    """Drop every order `user` may not see, whatever the query returned."""
    visible = [o for o in orders if can_view_order(user, o)]
    if customer_id:
        visible = [o for o in visible if o.get("customerId") == customer_id]
    return visible


def ensure_can_view_order(user: AuthUser, order: dict) -> None:
    if not can_view_order(user, order):
        raise AccessDeniedError()


def ensure_can_modify_order(user: AuthUser, order: dict) -> None:
    if user.role == "customer":
        raise AccessDeniedError("Customers cannot modify orders")
    ensure_can_view_order(user, order)


def ensure_can_place_order(user: AuthUser, customer_id: str) -> None:
    if user.role != "admin" and user.id != customer_id:
        raise AccessDeniedError()


def can_manage_user(user: AuthUser, target: dict) -> bool:
    """Admins manage everyone, sellers only the customers bound to them."""
    if user.role == "admin":
        return True
    return (
        user.role == "seller"
        and target.get("role") == "customer"
        and target.get("sellerId") == user.id
    )


def ensure_can_view_user(user: AuthUser, target: dict) -> None:
    if str(target.get("_id")) == user.id:
        return
    if not can_manage_user(user, target):
        raise AccessDeniedError()


def ensure_can_manage_user(user: AuthUser, target: dict) -> None:
    if not can_manage_user(user, target):
        raise AccessDeniedError()


def product_scope(user: AuthUser, seller_id: Optional[str] = None) -> Dict:
    """Store filter for the products `user` may list."""
    if user.role == "seller":
        return {"sellerId": user.id}
    if user.role == "customer":
        return {"sellerId": user.sellerId, "isActive": True}
    if user.role == "admin":
        return {"sellerId": seller_id} if seller_id else {}
    raise AccessDeniedError()


def can_view_product(user: AuthUser, product: dict) -> bool:
    if user.role == "admin":
        return True
    if user.role == "seller":
        return product.get("sellerId") == user.id
    if user.role == "customer":
        return product.get("sellerId") == user.sellerId and product.get("isActive", True)
    return False


def ensure_can_manage_product(user: AuthUser, product: dict) -> None:
    if user.role == "admin":
        return
    if user.role != "seller" or product.get("sellerId") != user.id:
        raise AccessDeniedError()


def transaction_scope(user: AuthUser, customer_id: Optional[str] = None) -> Tuple[Dict, Optional[str]]:
    """Store filter for the customer transactions `user` may list.

    Like `order_query_scope`, the customer id is returned for matching in
    memory rather than folded into the store filter.
    """
    if user.role == "seller":
        return {"sellerId": user.id}, customer_id
    if user.role == "admin":
        return {}, customer_id
    raise AccessDeniedError("Only sellers and admins can view transactions")


def ensure_can_manage_transaction(user: AuthUser, transaction: dict) -> None:
    if user.role == "admin":
        return
    if user.role != "seller" or transaction.get("sellerId") != user.id:
        raise AccessDeniedError("You can only manage your own transactions")
