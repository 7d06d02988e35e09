import os
import logging
from datetime import datetime, timedelta, timezone
import hashlib
import secrets
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Cookie, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException
from bson import ObjectId

import database
from database import db, now_iso
from errors import WholesaleError, NotFoundError
from schemas import (
    AuthUser, LoginRequest,
    UserCreate, UserUpdate,
    ProductCreate, ProductUpdate,
    OrderCreate, OrderUpdate,
    ConversationCreate, ConversationUpdate, MessageCreate, SellerChatRequest,
    TransactionCreate,
)
from access import (
    order_query_scope, filter_visible_orders, can_view_order,
    ensure_can_view_order, ensure_can_modify_order, ensure_can_place_order,
    ensure_can_view_user, ensure_can_manage_user,
    product_scope, can_view_product, ensure_can_manage_product,
    transaction_scope, ensure_can_manage_transaction,
)
from events import relay, order_event, open_order_stream
import ledger

logger = logging.getLogger(__name__)

APP_ENV = os.getenv("APP_ENV", "development")
SECURE_COOKIES = APP_ENV == "production"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

SESSION_COOKIE = "session"
ROLE_COOKIE = "user-role"
SESSION_DURATION = timedelta(days=14)
SESSION_DURATION_SECONDS = int(SESSION_DURATION.total_seconds())

app = FastAPI(title="Wholesale Ordering API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -------------------- Errors --------------------

def error_response(status_code: int, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


@app.exception_handler(WholesaleError)
async def wholesale_error_handler(request: Request, exc: WholesaleError):
    return error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return error_response(400, message)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error")

# -------------------- Helpers --------------------

def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id format")


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    if not salt:
        salt = secrets.token_hex(16)
    h = hashlib.sha256((salt + password).encode()).hexdigest()
    return h, salt


def verify_password(password: str, salt: str, expected_hash: str) -> bool:
    h, _ = hash_password(password, salt)
    return secrets.compare_digest(h, expected_hash)


def doc_to_json(doc: dict) -> dict:
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, dict):
            out[k] = doc_to_json(v)
        elif isinstance(v, list):
            out[k] = [doc_to_json(x) if isinstance(x, dict) else (str(x) if isinstance(x, ObjectId) else x) for x in v]
        else:
            out[k] = v
    return out


PRIVATE_USER_FIELDS = ("passwordHash", "salt", "token", "tokenExpires")


def user_to_json(doc: dict) -> dict:
    out = doc_to_json(doc)
    for field in PRIVATE_USER_FIELDS:
        out.pop(field, None)
    return out


def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body


def require_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def get_user_by_token(token: str) -> Optional[dict]:
    return db["user"].find_one({"token": token, "tokenExpires": {"$gt": now_iso()}})


def auth_dependency(session: Optional[str] = Cookie(None)) -> AuthUser:
    if not session:
        raise HTTPException(status_code=401, detail="Unauthorized")
    require_db()
    user = get_user_by_token(session)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    if user.get("isActive") is False:
        raise HTTPException(status_code=401, detail="Account inactive")
    return AuthUser(
        id=str(user["_id"]),
        email=user["email"],
        name=user.get("name", ""),
        role=user.get("role", "customer"),
        sellerId=user.get("sellerId"),
    )


def require_admin(user: AuthUser = Depends(auth_dependency)) -> AuthUser:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def find_or_404(collection: str, doc_id: str, kind: str) -> dict:
    doc = db[collection].find_one({"_id": to_object_id(doc_id)})
    if not doc:
        raise NotFoundError(kind)
    return doc


def set_session_cookies(response: Response, token: str, role: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE, value=token, max_age=SESSION_DURATION_SECONDS, path="/",
        httponly=True, secure=SECURE_COOKIES, samesite="strict",
    )
    # Read by the browser for page routing only; it grants nothing, so lax
    # keeps it present on top-level navigations from other sites.
    response.set_cookie(
        key=ROLE_COOKIE, value=role, max_age=SESSION_DURATION_SECONDS, path="/",
        httponly=False, secure=SECURE_COOKIES, samesite="lax",
    )


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/", httponly=True, secure=SECURE_COOKIES, samesite="strict")
    response.delete_cookie(ROLE_COOKIE, path="/", secure=SECURE_COOKIES, samesite="lax")

# -------------------- Health --------------------

@app.get("/")
def read_root():
    return {"message": "Wholesale ordering API is running"}

# -------------------- Auth --------------------

@app.post("/api/auth/login", response_model=dict)
def login(payload: LoginRequest, response: Response):
    require_db()
    user = db["user"].find_one({"email": payload.email})
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(payload.password, user.get("salt", ""), user.get("passwordHash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.get("isActive") is False:
        raise HTTPException(status_code=403, detail="Account has been deactivated")
    token = secrets.token_urlsafe(32)
    expires = (datetime.now(timezone.utc) + SESSION_DURATION).isoformat(timespec="milliseconds")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"token": token, "tokenExpires": expires}})
    set_session_cookies(response, token, user["role"])
    logger.info("User %s logged in as %s", user["_id"], user["role"])
    return {
        "success": True,
        "role": user["role"],
        "displayName": user.get("name", ""),
        "uid": str(user["_id"]),
        "sessionExpiresInSeconds": SESSION_DURATION_SECONDS,
        "message": "Admin login successful" if user["role"] == "admin" else "Login successful",
    }


@app.post("/api/auth/logout", response_model=dict)
def logout(response: Response, session: Optional[str] = Cookie(None)):
    if session and db is not None:
        db["user"].update_one({"token": session}, {"$unset": {"token": "", "tokenExpires": ""}})
    clear_session_cookies(response)
    return ok(message="Logged out successfully")


@app.get("/api/auth/session", response_model=dict)
def current_session(user: AuthUser = Depends(auth_dependency)):
    return ok(user.model_dump())

# -------------------- Users --------------------

@app.get("/api/users", response_model=dict)
def list_users(role: Optional[str] = Query(None), user: AuthUser = Depends(auth_dependency)):
    if user.role == "admin":
        query = {"role": role} if role else {}
    elif user.role == "seller":
        query = {"role": "customer", "sellerId": user.id}
    else:
        raise HTTPException(status_code=403, detail="Access denied")
    users = db["user"].find(query).sort("createdAt", -1)
    return ok([user_to_json(u) for u in users])


@app.post("/api/users", response_model=dict, status_code=201)
def create_user(payload: UserCreate, user: AuthUser = Depends(auth_dependency)):
    if user.role == "seller":
        if payload.role != "customer":
            raise HTTPException(status_code=403, detail="Sellers can only create customers")
        seller_id = user.id
    elif user.role == "admin":
        seller_id = payload.sellerId
    else:
        raise HTTPException(status_code=403, detail="Access denied")

    if payload.role == "customer":
        if not seller_id:
            raise HTTPException(status_code=400, detail="Customers need a sellerId")
        seller = db["user"].find_one({"_id": to_object_id(seller_id), "role": "seller"})
        if not seller:
            raise NotFoundError("Seller")
    else:
        seller_id = None

    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    pw_hash, salt = hash_password(payload.password)
    user_doc = {
        "email": payload.email,
        "name": payload.name,
        "businessName": payload.businessName or "",
        "phone": payload.phone or "",
        "address": payload.address or "",
        "role": payload.role,
        "passwordHash": pw_hash,
        "salt": salt,
        "isActive": True,
        "createdBy": user.id,
    }
    if seller_id:
        user_doc["sellerId"] = seller_id
    uid = database.create_document("user", user_doc)
    logger.info("User %s created %s %s", user.id, payload.role, uid)
    new_doc = db["user"].find_one({"_id": ObjectId(uid)})
    return ok(user_to_json(new_doc), "User created successfully")


@app.get("/api/users/{user_id}", response_model=dict)
def get_user(user_id: str, user: AuthUser = Depends(auth_dependency)):
    target = find_or_404("user", user_id, "User")
    ensure_can_view_user(user, target)
    return ok(user_to_json(target))


@app.put("/api/users/{user_id}", response_model=dict)
def update_user(user_id: str, payload: UserUpdate, user: AuthUser = Depends(auth_dependency)):
    target = find_or_404("user", user_id, "User")
    ensure_can_manage_user(user, target)
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    password = update.pop("password", None)
    if password:
        update["passwordHash"], update["salt"] = hash_password(password)
    if update.get("isActive") is False:
        update["token"] = None
    update["updatedAt"] = now_iso()
    db["user"].update_one({"_id": target["_id"]}, {"$set": update})
    new_doc = db["user"].find_one({"_id": target["_id"]})
    return ok(user_to_json(new_doc), "User updated successfully")


def delete_user_cascade(target: dict) -> dict:
    """Delete a user and everything that only exists because of them."""
    uid = str(target["_id"])
    removed = {"users": 1, "customers": 0, "products": 0, "orders": 0, "transactions": 0}
    db["user"].delete_one({"_id": target["_id"]})
    affected = [uid]
    if target.get("role") == "seller":
        customer_ids = [str(c["_id"]) for c in db["user"].find({"role": "customer", "sellerId": uid})]
        if customer_ids:
            removed["customers"] = db["user"].delete_many(
                {"_id": {"$in": [ObjectId(c) for c in customer_ids]}}
            ).deleted_count
        removed["products"] = db["product"].delete_many({"sellerId": uid}).deleted_count
        removed["orders"] = db["order"].delete_many(
            {"$or": [{"sellerId": uid}, {"customerId": {"$in": customer_ids}}]}
        ).deleted_count
        removed["transactions"] = db["transaction"].delete_many(
            {"$or": [{"sellerId": uid}, {"customerId": {"$in": customer_ids}}]}
        ).deleted_count
        affected.extend(customer_ids)
    elif target.get("role") == "customer":
        removed["orders"] = db["order"].delete_many({"customerId": uid}).deleted_count
        removed["transactions"] = db["transaction"].delete_many({"customerId": uid}).deleted_count
    db["conversation"].update_many(
        {"participants": {"$in": affected}},
        {"$set": {"status": "archived", "updatedAt": now_iso()}},
    )
    return removed


@app.delete("/api/users/{user_id}", response_model=dict)
def delete_user(user_id: str, user: AuthUser = Depends(require_admin)):
    if user_id == user.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    target = find_or_404("user", user_id, "User")
    removed = delete_user_cascade(target)
    logger.info("Admin %s deleted %s %s: %s", user.id, target.get("role"), user_id, removed)
    return ok(removed, "User deleted successfully")


@app.get("/api/customers/me", response_model=dict)
def current_customer(user: AuthUser = Depends(auth_dependency)):
    """The calling customer's profile and the active catalogue of their seller."""
    if user.role != "customer":
        raise HTTPException(status_code=403, detail="Only customers can access this endpoint")
    profile = find_or_404("user", user.id, "Customer profile")
    products = db["product"].find({"sellerId": user.sellerId, "isActive": True}).sort("createdAt", -1)
    return ok({
        "customer": user_to_json(profile),
        "products": [doc_to_json(p) for p in products],
    })

# -------------------- Products --------------------

@app.get("/api/products", response_model=dict)
def list_products(
    q: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    sellerId: Optional[str] = Query(None),
    user: AuthUser = Depends(auth_dependency),
):
    filter_query = product_scope(user, sellerId)
    if category:
        filter_query["category"] = category
    if q:
        filter_query["name"] = {"$regex": q, "$options": "i"}
    products = db["product"].find(filter_query).sort("createdAt", -1)
    return ok([doc_to_json(p) for p in products])


@app.post("/api/products", response_model=dict, status_code=201)
def create_product(payload: ProductCreate, user: AuthUser = Depends(auth_dependency)):
    if user.role != "seller":
        raise HTTPException(status_code=403, detail="Only sellers can create products")
    pid = database.create_document("product", {"sellerId": user.id, **payload.model_dump()})
    prod = db["product"].find_one({"_id": ObjectId(pid)})
    return ok(doc_to_json(prod), "Product created successfully")


@app.get("/api/products/{product_id}", response_model=dict)
def get_product(product_id: str, user: AuthUser = Depends(auth_dependency)):
    prod = find_or_404("product", product_id, "Product")
    if not can_view_product(user, prod):
        raise HTTPException(status_code=403, detail="Access denied")
    return ok(doc_to_json(prod))


@app.put("/api/products/{product_id}", response_model=dict)
def update_product(product_id: str, payload: ProductUpdate, user: AuthUser = Depends(auth_dependency)):
    prod = find_or_404("product", product_id, "Product")
    ensure_can_manage_product(user, prod)
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    update["updatedAt"] = now_iso()
    db["product"].update_one({"_id": prod["_id"]}, {"$set": update})
    new_doc = db["product"].find_one({"_id": prod["_id"]})
    return ok(doc_to_json(new_doc), "Product updated successfully")


@app.delete("/api/products/{product_id}", response_model=dict)
def delete_product(product_id: str, user: AuthUser = Depends(auth_dependency)):
    prod = find_or_404("product", product_id, "Product")
    ensure_can_manage_product(user, prod)
    db["product"].delete_one({"_id": prod["_id"]})
    return ok(message="Product deleted successfully")

# -------------------- Orders --------------------

@app.get("/api/orders", response_model=dict)
def list_orders(
    customerId: Optional[str] = Query(None),
    sellerId: Optional[str] = Query(None),
    user: AuthUser = Depends(auth_dependency),
):
    query, post_filter_customer = order_query_scope(user, customerId, sellerId)
    orders = db["order"].find(query).sort("createdAt", -1)
    visible = filter_visible_orders(user, orders, post_filter_customer)
    return ok([doc_to_json(o) for o in visible])


@app.post("/api/orders", response_model=dict, status_code=201)
def create_order(payload: OrderCreate, user: AuthUser = Depends(auth_dependency)):
    ensure_can_place_order(user, payload.customerId)
    customer = db["user"].find_one({"_id": to_object_id(payload.customerId), "role": "customer"})
    if not customer:
        raise NotFoundError("Customer")
    if customer.get("sellerId") != payload.sellerId:
        raise HTTPException(status_code=403, detail="Customer does not belong to this seller")

    order_doc = ledger.new_order(payload)
    oid = db["order"].insert_one(order_doc).inserted_id
    created = doc_to_json({**order_doc, "_id": oid})
    relay.emit(order_event("order.created", created))
    logger.info("Order %s created for customer %s (total %.2f)", oid, payload.customerId, order_doc["total"])
    return ok(created, "Order created successfully")


@app.get("/api/orders/{order_id}", response_model=dict)
def get_order(order_id: str, user: AuthUser = Depends(auth_dependency)):
    order = find_or_404("order", order_id, "Order")
    ensure_can_view_order(user, order)
    return ok(doc_to_json(order))


@app.put("/api/orders/{order_id}", response_model=dict)
def update_order(order_id: str, payload: OrderUpdate, user: AuthUser = Depends(auth_dependency)):
    order = find_or_404("order", order_id, "Order")
    ensure_can_modify_order(user, order)
    # No transaction: concurrent updates of one order race on the balance fields.
    updated = ledger.apply_update(order, payload, user.id)
    changes = {k: v for k, v in updated.items() if k != "_id"}
    db["order"].update_one({"_id": order["_id"]}, {"$set": changes})
    new_doc = doc_to_json(db["order"].find_one({"_id": order["_id"]}))
    relay.emit(order_event("order.updated", new_doc))

    if payload.paymentAmount is not None:
        logger.info("Payment of %.2f recorded on order %s by %s", payload.paymentAmount, order_id, user.id)
        message = (f"Payment of {payload.paymentAmount:.2f} recorded successfully. "
                   f"Remaining balance: {new_doc['remainingAmount']:.2f}")
    elif payload.creditNoteAmount is not None:
        logger.info("Credit note of %.2f issued on order %s by %s", payload.creditNoteAmount, order_id, user.id)
        message = f"Credit note of {payload.creditNoteAmount:.2f} issued successfully"
    else:
        message = "Order updated successfully"
    return ok(new_doc, message)


@app.delete("/api/orders/{order_id}", response_model=dict)
def delete_order(order_id: str, user: AuthUser = Depends(auth_dependency)):
    order = find_or_404("order", order_id, "Order")
    ensure_can_modify_order(user, order)
    if order.get("status") not in ("pending", "cancelled"):
        raise HTTPException(status_code=400, detail="Cannot delete orders that are already processed")
    db["order"].delete_one({"_id": order["_id"]})
    logger.info("Order %s deleted by %s", order_id, user.id)
    return ok(message="Order deleted successfully")

# -------------------- Transactions --------------------

@app.get("/api/transactions", response_model=dict)
def list_transactions(
    customerId: Optional[str] = Query(None),
    paymentMethod: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    user: AuthUser = Depends(auth_dependency),
):
    query, customer_filter = transaction_scope(user, customerId)
    transactions = db["transaction"].find(query).sort("transactionDate", -1)
    results = []
    for t in transactions:
        if customer_filter and t.get("customerId") != customer_filter:
            continue
        if paymentMethod and t.get("paymentMethod") != paymentMethod:
            continue
        if startDate and t.get("transactionDate", "") < startDate:
            continue
        if endDate and t.get("transactionDate", "") > endDate:
            continue
        results.append(doc_to_json(t))
    return ok(results)


@app.post("/api/transactions", response_model=dict, status_code=201)
def create_transaction(payload: TransactionCreate, user: AuthUser = Depends(auth_dependency)):
    if user.role not in ("seller", "admin"):
        raise HTTPException(status_code=403, detail="Only sellers and admins can record transactions")
    customer = db["user"].find_one({"_id": to_object_id(payload.customerId), "role": "customer"})
    if not customer:
        raise NotFoundError("Customer")
    if user.role == "seller" and customer.get("sellerId") != user.id:
        raise HTTPException(status_code=403, detail="Customer does not belong to this seller")

    seller_id = user.id if user.role == "seller" else customer.get("sellerId")
    transaction = ledger.new_transaction(payload, customer, user.id, seller_id)
    tid = db["transaction"].insert_one(transaction).inserted_id
    logger.info("Transaction %s (%s %.2f) recorded for customer %s by %s",
                tid, payload.type, transaction["amount"], payload.customerId, user.id)
    return ok(doc_to_json({**transaction, "_id": tid}), "Transaction recorded successfully")


@app.delete("/api/transactions/{transaction_id}", response_model=dict)
def delete_transaction(transaction_id: str, user: AuthUser = Depends(auth_dependency)):
    transaction = find_or_404("transaction", transaction_id, "Transaction")
    ensure_can_manage_transaction(user, transaction)
    db["transaction"].delete_one({"_id": transaction["_id"]})
    logger.info("Transaction %s deleted by %s", transaction_id, user.id)
    return ok(message="Transaction deleted successfully")

# -------------------- Events --------------------

@app.get("/api/events/orders")
async def order_events(request: Request, user: AuthUser = Depends(auth_dependency)):
    frames, unsubscribe = open_order_stream(request, lambda order: can_view_order(user, order), source=relay)
    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive"},
        background=BackgroundTask(unsubscribe),
    )

# -------------------- Conversations --------------------

def get_conversation_for(conversation_id: str, user: AuthUser) -> dict:
    conversation = find_or_404("conversation", conversation_id, "Conversation")
    if user.id not in conversation.get("participants", []):
        raise HTTPException(status_code=403, detail="Forbidden")
    return conversation


@app.get("/api/conversations", response_model=dict)
def list_conversations(
    status: str = Query("active"),
    type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    user: AuthUser = Depends(auth_dependency),
):
    query = {"participants": user.id, "status": status}
    if type:
        query["type"] = type
    conversations = database.get_documents("conversation", query, limit=limit, sort=[("updatedAt", -1)])
    return ok([doc_to_json(c) for c in conversations])


@app.post("/api/conversations", response_model=dict, status_code=201)
def create_conversation(payload: ConversationCreate, user: AuthUser = Depends(auth_dependency)):
    participant_ids = list(dict.fromkeys(payload.participantIds))
    if user.id not in participant_ids:
        participant_ids.append(user.id)
    if len(participant_ids) < 2:
        raise HTTPException(status_code=400, detail="At least 2 participants required")

    names, roles = {}, {}
    for uid in participant_ids:
        participant = db["user"].find_one({"_id": to_object_id(uid)})
        if not participant:
            raise NotFoundError("Participant")
        names[uid] = participant.get("name") or participant.get("email", "Unknown")
        roles[uid] = payload.participantRoles.get(uid, participant.get("role", "customer"))

    conversation = insert_conversation(user, participant_ids, roles, names, payload.type,
                                       payload.subject, payload.initialMessage, order_id=payload.orderId)
    return ok(doc_to_json(conversation), "Conversation created")


def insert_conversation(user: AuthUser, participant_ids: list, roles: dict, names: dict,
                        conversation_type: str, subject: str, initial_message: Optional[str],
                        order_id: Optional[str] = None) -> dict:
    now = now_iso()
    initial = (initial_message or "").strip()
    conversation = {
        "participants": participant_ids,
        "participantRoles": roles,
        "participantNames": names,
        "type": conversation_type,
        "orderId": order_id,
        "subject": subject,
        "lastMessage": {"text": initial[:100] or "Conversation started", "senderId": user.id, "timestamp": now},
        "unreadCount": {uid: (1 if initial and uid != user.id else 0) for uid in participant_ids},
        "status": "active",
        "createdAt": now,
        "updatedAt": now,
    }
    cid = db["conversation"].insert_one(conversation).inserted_id
    if initial:
        db["message"].insert_one({
            "conversationId": str(cid),
            "senderId": user.id,
            "senderName": names[user.id],
            "senderRole": user.role,
            "text": initial,
            "type": "text",
            "readBy": [user.id],
            "timestamp": now,
            "createdAt": now,
        })
    return {**conversation, "_id": cid}


@app.post("/api/conversations/get-or-create-seller-chat", response_model=dict)
def get_or_create_seller_chat(payload: Optional[SellerChatRequest] = None,
                              user: AuthUser = Depends(auth_dependency)):
    if user.role != "customer":
        raise HTTPException(status_code=403, detail="This endpoint is only for customers")
    if not user.sellerId:
        raise HTTPException(status_code=400, detail="No seller assigned to this customer")

    existing = db["conversation"].find_one({
        "participants": {"$all": [user.id, user.sellerId]},
        "type": "general",
        "status": "active",
    })
    if existing:
        return {**ok(doc_to_json(existing)), "created": False}

    seller = db["user"].find_one({"_id": to_object_id(user.sellerId)})
    if not seller:
        raise NotFoundError("Seller")
    customer_name = user.name or user.email
    names = {user.id: customer_name, user.sellerId: seller.get("name") or seller.get("email", "Seller")}
    roles = {user.id: "customer", user.sellerId: "seller"}
    conversation = insert_conversation(user, [user.id, user.sellerId], roles, names, "general",
                                       f"Chat: {customer_name}", payload.initialMessage if payload else None)
    return {**ok(doc_to_json(conversation), "Conversation created"), "created": True}


@app.get("/api/conversations/{conversation_id}", response_model=dict)
def get_conversation(conversation_id: str, user: AuthUser = Depends(auth_dependency)):
    return ok(doc_to_json(get_conversation_for(conversation_id, user)))


@app.patch("/api/conversations/{conversation_id}", response_model=dict)
def update_conversation(conversation_id: str, payload: ConversationUpdate,
                        user: AuthUser = Depends(auth_dependency)):
    conversation = get_conversation_for(conversation_id, user)
    update = {"updatedAt": now_iso()}
    if payload.status is not None:
        if user.role != "admin":
            raise HTTPException(status_code=403, detail="Only admins can change conversation status")
        update["status"] = payload.status
    if payload.unreadCount is not None:
        update[f"unreadCount.{user.id}"] = payload.unreadCount
    db["conversation"].update_one({"_id": conversation["_id"]}, {"$set": update})
    new_doc = db["conversation"].find_one({"_id": conversation["_id"]})
    return ok(doc_to_json(new_doc), "Conversation updated")


@app.delete("/api/conversations/{conversation_id}", response_model=dict)
def delete_conversation(conversation_id: str, user: AuthUser = Depends(require_admin)):
    conversation = find_or_404("conversation", conversation_id, "Conversation")
    removed = db["message"].delete_many({"conversationId": conversation_id}).deleted_count
    db["conversation"].delete_one({"_id": conversation["_id"]})
    logger.info("Admin %s deleted conversation %s and %d messages", user.id, conversation_id, removed)
    return ok(message="Conversation deleted successfully")


@app.get("/api/conversations/{conversation_id}/messages", response_model=dict)
def list_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    before: Optional[str] = Query(None),
    user: AuthUser = Depends(auth_dependency),
):
    get_conversation_for(conversation_id, user)
    query = {"conversationId": conversation_id}
    if before:
        query["timestamp"] = {"$lt": before}
    messages = db["message"].find(query).sort([("timestamp", -1), ("_id", -1)]).limit(limit)
    return ok([doc_to_json(m) for m in messages])


@app.post("/api/conversations/{conversation_id}/messages", response_model=dict, status_code=201)
def send_message(conversation_id: str, payload: MessageCreate, user: AuthUser = Depends(auth_dependency)):
    text = payload.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message text is required")
    conversation = get_conversation_for(conversation_id, user)

    now = now_iso()
    message = {
        "conversationId": conversation_id,
        "senderId": user.id,
        "senderName": conversation.get("participantNames", {}).get(user.id) or user.name,
        "senderRole": user.role,
        "text": text,
        "type": payload.type,
        "readBy": [user.id],
        "timestamp": now,
        "createdAt": now,
    }
    mid = db["message"].insert_one(message).inserted_id

    update = {
        "$set": {
            "lastMessage": {"text": text[:100], "senderId": user.id, "timestamp": now},
            "updatedAt": now,
            f"unreadCount.{user.id}": 0,
        },
    }
    others = [p for p in conversation["participants"] if p != user.id]
    if others:
        update["$inc"] = {f"unreadCount.{p}": 1 for p in others}
    db["conversation"].update_one({"_id": conversation["_id"]}, update)
    return ok(doc_to_json({**message, "_id": mid}), "Message sent")


@app.patch("/api/conversations/{conversation_id}/messages", response_model=dict)
def mark_messages_read(conversation_id: str, user: AuthUser = Depends(auth_dependency)):
    conversation = get_conversation_for(conversation_id, user)
    db["message"].update_many(
        {"conversationId": conversation_id, "readBy": {"$ne": user.id}},
        {"$addToSet": {"readBy": user.id}},
    )
    db["conversation"].update_one(
        {"_id": conversation["_id"]},
        {"$set": {f"unreadCount.{user.id}": 0}},
    )
    return ok(message="Messages marked as read")

# -------------------- Admin --------------------

@app.get("/api/admin/stats", response_model=dict)
def admin_stats(user: AuthUser = Depends(require_admin)):
    users_by_role = {role: db["user"].count_documents({"role": role}) for role in ("admin", "seller", "customer")}
    orders_by_status = {}
    revenue = 0.0
    outstanding = 0.0
    total_orders = 0
    for o in db["order"].find({}):
        total_orders += 1
        orders_by_status[o.get("status", "pending")] = orders_by_status.get(o.get("status", "pending"), 0) + 1
        revenue += float(o.get("totalPaid", 0))
        outstanding += float(o.get("remainingAmount", 0))
    return ok({
        "users": users_by_role,
        "totalOrders": total_orders,
        "ordersByStatus": orders_by_status,
        "revenue": round(revenue, 2),
        "outstanding": round(outstanding, 2),
    })


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
