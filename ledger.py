"""
Order arithmetic: delivery fee, totals, payments and credit notes.

Every function that changes money on an order finishes with
`recompute_balance`, so `totalPaid`, `totalCreditNotes`, `remainingAmount`
and `paymentStatus` always agree with the stored payment and credit-note
lists no matter which fields were touched.
"""

import copy
import math
import secrets
from typing import Iterable, List, Optional

from database import now_iso
from errors import OrderValidationError
from schemas import Order, OrderCreate, OrderItemIn, OrderUpdate, TransactionCreate

FREE_DELIVERY_THRESHOLD = 100.0
FLAT_DELIVERY_FEE = 5.0


def money(value) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise OrderValidationError("Amounts must be finite numbers")
    return round(value, 2)


def exact_amount(value, label: str) -> float:
    """Return `value` unchanged, or reject it if it is not a whole number of cents."""
    amount = money(value)
    if amount != value:
        raise OrderValidationError(f"{label} must not have more than 2 decimal places")
    if amount <= 0:
        raise OrderValidationError(f"{label} must be greater than zero")
    return amount


def default_delivery_fee(subtotal: float) -> float:
    return 0.0 if subtotal >= FREE_DELIVERY_THRESHOLD else FLAT_DELIVERY_FEE


def build_line_items(items: Iterable[OrderItemIn]) -> List[dict]:
    lines = []
    for item in items:
        line = item.model_dump()
        line["lineTotal"] = money(item.price * item.quantity)
        lines.append(line)
    return lines


def derive_payment_status(order: dict) -> str:
    if order["remainingAmount"] <= 0:
        return "paid"
    if order.get("overdue"):
        return "overdue"
    if order["totalPaid"] > 0:
        return "partial"
    return "pending"


def recompute_balance(order: dict) -> dict:
    """Rebuild the derived balance fields of `order` in place and return it."""
    order["totalPaid"] = money(sum(p["amount"] for p in order.get("payments", [])))
    order["totalCreditNotes"] = money(sum(c["amount"] for c in order.get("creditNotes", [])))
    order["remainingAmount"] = money(order["total"] - order["totalPaid"] - order["totalCreditNotes"])
    order["paymentStatus"] = derive_payment_status(order)
    return order


def new_order(payload: OrderCreate) -> dict:
    """Build the document for a freshly placed order."""
    subtotal = money(payload.subtotal)
    if payload.deliveryFee is not None:
        delivery_fee = money(payload.deliveryFee)
    else:
        delivery_fee = default_delivery_fee(subtotal)
    total = money(subtotal + delivery_fee)
    now = now_iso()
    order = Order(
        customerId=payload.customerId,
        sellerId=payload.sellerId,
        items=build_line_items(payload.items),
        paymentMethod=payload.paymentMethod,
        subtotal=subtotal,
        deliveryFee=delivery_fee,
        total=total,
        remainingAmount=total,
        deliveryAddress=payload.deliveryAddress or "",
        notes=payload.notes or "",
    ).model_dump()
    if payload.deliveryDate:
        order["deliveryDate"] = payload.deliveryDate
    else:
        order.pop("deliveryDate")
    order["createdAt"] = now
    order["updatedAt"] = now
    return recompute_balance(order)


def record_payment(order: dict, amount: float, created_by: str,
                   method: str = "cash", notes: Optional[str] = None) -> dict:
    amount = exact_amount(amount, "Payment amount")
    recompute_balance(order)
    if amount > order["remainingAmount"]:
        raise OrderValidationError(
            f"Payment amount ({amount:.2f}) would exceed remaining balance of {order['remainingAmount']:.2f}"
        )
    now = now_iso()
    order.setdefault("payments", []).append({
        "id": f"payment_{secrets.token_hex(6)}",
        "amount": amount,
        "date": now,
        "method": method,
        "notes": notes or "",
        "createdBy": created_by,
        "createdAt": now,
    })
    return recompute_balance(order)


def issue_credit_note(order: dict, amount: float, created_by: str,
                      reason: str = "other", notes: Optional[str] = None) -> dict:
    amount = exact_amount(amount, "Credit note amount")
    recompute_balance(order)
    if amount > order["remainingAmount"]:
        raise OrderValidationError(
            f"Credit note amount ({amount:.2f}) would exceed remaining balance of {order['remainingAmount']:.2f}"
        )
    now = now_iso()
    order.setdefault("creditNotes", []).append({
        "id": f"credit_{secrets.token_hex(6)}",
        "amount": amount,
        "reason": reason,
        "notes": notes or "",
        "date": now,
        "createdBy": created_by,
        "createdAt": now,
    })
    return recompute_balance(order)


def apply_update(order: dict, update: OrderUpdate, actor_id: str) -> dict:
    """Return a copy of `order` with `update` applied.

    Field overrides go first, then the payment, then the credit note. The
    input document is left untouched so a rejected update changes nothing.
    """
    updated = copy.deepcopy(order)
    if update.status:
        updated["status"] = update.status
    if update.deliveryDate:
        updated["deliveryDate"] = update.deliveryDate
    if update.notes is not None:
        updated["notes"] = update.notes

    amounts_changed = False
    if update.items is not None:
        updated["items"] = build_line_items(update.items)
        if update.subtotal is None:
            updated["subtotal"] = money(sum(line["lineTotal"] for line in updated["items"]))
        amounts_changed = True
    if update.subtotal is not None:
        updated["subtotal"] = money(update.subtotal)
        amounts_changed = True
    if update.deliveryFee is not None:
        updated["deliveryFee"] = money(update.deliveryFee)
        amounts_changed = True
    if update.total is not None:
        updated["total"] = money(update.total)
    elif amounts_changed:
        updated["total"] = money(updated["subtotal"] + updated["deliveryFee"])

    if update.paymentStatus == "overdue":
        updated["overdue"] = True
    elif update.paymentStatus in ("pending", "partial"):
        updated["overdue"] = False

    recompute_balance(updated)
    if updated["remainingAmount"] < 0:
        raise OrderValidationError(
            f"Order total ({updated['total']:.2f}) is below the amount already paid and credited"
        )

    if update.paymentAmount is not None:
        record_payment(updated, update.paymentAmount, actor_id,
                       method=update.paymentMethod, notes=update.paymentNotes)
    if update.creditNoteAmount is not None:
        issue_credit_note(updated, update.creditNoteAmount, actor_id,
                          reason=update.creditNoteReason, notes=update.creditNoteNotes)

    if update.paymentStatus == "paid" and updated["paymentStatus"] != "paid":
        raise OrderValidationError(
            f"Order cannot be marked paid with {updated['remainingAmount']:.2f} outstanding"
        )

    updated["updatedAt"] = now_iso()
    return updated


def new_transaction(payload: TransactionCreate, customer: dict, actor_id: str, seller_id: str) -> dict:
    """Build a customer-level ledger entry.

    Credit notes are stored as negative amounts so a customer's net payments
    are the plain sum of their entries. Entries are kept apart from the
    per-order `payments` and `creditNotes` lists and never rewrite an order's
    balance.
    """
    amount = exact_amount(payload.amount, "Amount")
    if payload.type == "credit_note":
        amount = -amount
    transaction = {
        "customerId": payload.customerId,
        "customerName": customer.get("businessName") or customer.get("name") or "Unknown",
        "sellerId": seller_id,
        "amount": amount,
        "type": payload.type,
        "paymentMethod": payload.paymentMethod,
        "reference": payload.reference or "",
        "notes": payload.notes or "",
        "transactionDate": payload.transactionDate,
        "createdBy": actor_id,
        "createdAt": now_iso(),
    }
    if payload.relatedOrderId:
        transaction["relatedOrderId"] = payload.relatedOrderId
    return transaction
