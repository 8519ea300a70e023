import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Literal, Any
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
import offers
from auth import (
    IdentityVerifier, Principal, current_principal, enforce_access_policy, get_identity_verifier, is_admin,
)
from config import settings
from database import (
    OFFERS, PAYMENTS, PROPERTIES, REVIEWS, USERS, WISHLIST,
    create_document, ensure_indexes, get_db, get_documents, now_utc, serialize_doc, to_object_id,
)
from errors import ConflictError, ForbiddenError, MarketplaceError, NotFoundError, ValidationError
from gateway import PaymentGateway, get_payment_gateway, intent_idempotency_key
from logconfig import setup_logging
from schemas import Offer, Property, PropertyStatus, Review, Role, WishlistEntry, get_schema_definitions

setup_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            ensure_indexes(database.db)
        except PyMongoError:
            logger.exception("Could not create indexes")
    yield


app = FastAPI(
    title="Real Estate Marketplace API",
    lifespan=lifespan,
    dependencies=[Depends(enforce_access_policy)],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    if getattr(exc, "timeout", False):
        logger.warning("Store timeout on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Database timeout, please retry"},
            headers={"Retry-After": "1"},
        )
    logger.error("Store error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------- Helpers ----------
class IdResponse(BaseModel):
    id: str


def update_by_id(db: Database, collection: str, doc_id: str, fields: dict, label: str):
    fields = dict(fields)
    fields["updated_at"] = now_utc()
    res = db[collection].update_one({"_id": to_object_id(doc_id)}, {"$set": fields})
    if res.matched_count == 0:
        raise NotFoundError(f"{label} not found")
    return {"updated": True}


def delete_by_id(db: Database, collection: str, doc_id: str, label: str):
    res = db[collection].delete_one({"_id": to_object_id(doc_id)})
    if res.deleted_count == 0:
        raise NotFoundError(f"{label} not found")
    return {"deleted": True}


def find_by_id(db: Database, collection: str, doc_id: str, label: str):
    d = db[collection].find_one({"_id": to_object_id(doc_id)})
    if not d:
        raise NotFoundError(f"{label} not found")
    return serialize_doc(d)


def authorize_offer_party(db: Database, offer_id: str, principal: Principal, party: str):
    """Allow the offer's agent or buyer (``party`` names the field), or an admin."""
    offer = db[OFFERS].find_one({"_id": to_object_id(offer_id)})
    if not offer:
        raise NotFoundError("Offer not found")
    if principal.email and principal.email == offer.get(party):
        return
    if is_admin(db, principal):
        return
    raise ForbiddenError("Not allowed to act on this offer")


# ---------- Root & Health ----------
@app.get("/")
def read_root():
    return {"message": "Real Estate server is running"}


@app.get("/health")
def health():
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = database.db
    if db is None:
        return response
    response["database_name"] = db.name
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "Connected & Working"
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        logger.warning("Health check failed: %s", e)
        response["database"] = f"Connected but Error: {str(e)[:50]}"
    return response


# ---------- Schema exposure ----------
@app.get("/schema")
def read_schema():
    return [s.model_dump() for s in get_schema_definitions()]


# ---------- Users ----------
class UserLogin(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    photoURL: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    photoURL: Optional[str] = None
    phone: Optional[str] = None


class RoleUpdate(BaseModel):
    role: Role


@app.get("/users")
def list_users(db: Database = Depends(get_db)):
    return get_documents(db, USERS)


@app.get("/users/{email}")
def get_user(email: str, db: Database = Depends(get_db)):
    u = db[USERS].find_one({"email": email})
    if not u:
        raise NotFoundError("User not found")
    return serialize_doc(u)


@app.get("/users/{email}/role")
def get_user_role(email: str, db: Database = Depends(get_db)):
    u = db[USERS].find_one({"email": email})
    if not u:
        raise NotFoundError("User not found")
    return {"role": u.get("role") or "user"}


@app.put("/users/{email}/role")
def update_user_role(email: str, body: RoleUpdate, db: Database = Depends(get_db)):
    res = db[USERS].update_one({"email": email}, {"$set": {"role": body.role, "updated_at": now_utc()}})
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    return {"updated": True}


@app.put("/users/{email}/fraud")
def mark_user_fraud(email: str, db: Database = Depends(get_db)):
    # re-running this completes a cascade that stopped half way
    res = db[USERS].update_one({"email": email}, {"$set": {"status": "fraud", "updated_at": now_utc()}})
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    removed = db[PROPERTIES].delete_many({"agent_email": email})
    logger.info("User %s marked fraud, %d properties removed", email, removed.deleted_count)
    return {"message": "Marked as fraud and properties removed", "properties_deleted": removed.deleted_count}


@app.put("/users/{email}")
def update_user(
    email: str,
    body: UserUpdate,
    principal: Principal = Depends(current_principal),
    db: Database = Depends(get_db),
):
    if principal.email != email:
        raise ForbiddenError("Users can only update their own profile")
    update = body.model_dump(exclude_none=True)
    if not update:
        raise ValidationError("No fields to update")
    update["updated_at"] = now_utc()
    res = db[USERS].update_one({"email": email}, {"$set": update})
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    return {"updated": True}


@app.post("/users")
def record_login(
    body: UserLogin,
    principal: Principal = Depends(current_principal),
    db: Database = Depends(get_db),
):
    if not principal.email or principal.email != body.email:
        raise ForbiddenError("Token does not belong to this user")
    now = now_utc()
    profile = body.model_dump(exclude_none=True, exclude={"email"})
    try:
        res = db[USERS].update_one(
            {"email": body.email},
            {
                "$set": {"last_log_in": now},
                "$setOnInsert": {**profile, "role": "user", "status": "normal", "created_at": now},
            },
            upsert=True,
        )
    except DuplicateKeyError:
        # the unique email index caught a concurrent first login
        db[USERS].update_one({"email": body.email}, {"$set": {"last_log_in": now}})
        return {"message": "User log in updated", "created": False}
    if res.upserted_id is not None:
        logger.info("New user %s created", body.email)
        return {"message": "New User created", "created": True, "id": str(res.upserted_id)}
    return {"message": "User log in updated", "created": False}


@app.delete("/users/{email}")
def delete_user(email: str, db: Database = Depends(get_db)):
    res = db[USERS].delete_one({"email": email})
    if res.deleted_count == 0:
        raise NotFoundError("User not found")
    return {"deleted": True}


# ---------- Properties ----------
class PropertyCreate(Property):
    pass


class PropertyUpdate(BaseModel):
    title: Optional[str] = None
    location: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    agent_name: Optional[str] = None
    agent_image: Optional[str] = None
    minPrice: Optional[float] = Field(None, ge=0)
    maxPrice: Optional[float] = Field(None, ge=0)


class PropertyStatusUpdate(BaseModel):
    status: PropertyStatus


@app.patch("/advertise-property/{property_id}")
def advertise_property(property_id: str, db: Database = Depends(get_db)):
    return update_by_id(db, PROPERTIES, property_id, {"isAdvertised": True, "advertisedAt": now_utc()}, "Property")


@app.get("/advertised-properties")
def list_advertised_properties(db: Database = Depends(get_db)):
    return get_documents(db, PROPERTIES, {"isAdvertised": True}, sort=[("advertisedAt", -1)])


@app.get("/properties")
def list_properties(
    search: Optional[str] = None,
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort: Optional[str] = None,
    db: Database = Depends(get_db),
):
    filt: dict[str, Any] = {}
    if search:
        filt["location"] = {"$regex": re.escape(search), "$options": "i"}

    sort_spec = None
    if sort_by in ("minPrice", "maxPrice") and sort in ("asc", "desc"):
        sort_spec = [(sort_by, 1 if sort == "asc" else -1)]

    return get_documents(db, PROPERTIES, filt, sort=sort_spec)


@app.get("/properties/agent/{email}")
def list_agent_properties(email: str, db: Database = Depends(get_db)):
    return get_documents(db, PROPERTIES, {"agent_email": email})


@app.get("/properties/{property_id}")
def get_property(property_id: str, db: Database = Depends(get_db)):
    return find_by_id(db, PROPERTIES, property_id, "Property")


@app.post("/properties", response_model=IdResponse)
def create_property(req: PropertyCreate, db: Database = Depends(get_db)):
    agent = db[USERS].find_one({"email": req.agent_email})
    if not agent or agent.get("status") == "fraud":
        raise ForbiddenError("Fraud agents can't add properties")
    doc = req.model_dump()
    doc.update(status="pending", isAdvertised=False, advertisedAt=None)
    new_id = create_document(db, PROPERTIES, doc)
    return {"id": new_id}


@app.patch("/properties/update/{property_id}")
def update_property_status(property_id: str, body: PropertyStatusUpdate, db: Database = Depends(get_db)):
    return update_by_id(db, PROPERTIES, property_id, {"status": body.status}, "Property")


@app.patch("/properties/verify/{property_id}")
def verify_property(property_id: str, db: Database = Depends(get_db)):
    return update_by_id(db, PROPERTIES, property_id, {"status": "verified"}, "Property")


@app.patch("/properties/reject/{property_id}")
def reject_property(property_id: str, db: Database = Depends(get_db)):
    return update_by_id(db, PROPERTIES, property_id, {"status": "reject"}, "Property")


@app.patch("/properties/{property_id}")
def update_property(property_id: str, body: PropertyUpdate, db: Database = Depends(get_db)):
    update = body.model_dump(exclude_none=True)
    if not update:
        raise ValidationError("No fields to update")
    return update_by_id(db, PROPERTIES, property_id, update, "Property")


@app.delete("/properties/{property_id}")
def delete_property(property_id: str, db: Database = Depends(get_db)):
    return delete_by_id(db, PROPERTIES, property_id, "Property")


# ---------- Wishlist ----------
class WishlistCreate(WishlistEntry):
    pass


@app.get("/wishlist")
def list_wishlist(email: str, db: Database = Depends(get_db)):
    return get_documents(db, WISHLIST, {"userEmail": email})


@app.get("/wishlist/{entry_id}")
def get_wishlist_entry(entry_id: str, db: Database = Depends(get_db)):
    return find_by_id(db, WISHLIST, entry_id, "Wishlist entry")


@app.post("/wishlist", response_model=IdResponse)
def add_to_wishlist(req: WishlistCreate, db: Database = Depends(get_db)):
    if db[WISHLIST].find_one({"propertyId": req.propertyId, "userEmail": req.userEmail}):
        raise ConflictError("Property already in wishlist")
    try:
        new_id = create_document(db, WISHLIST, req)
    except DuplicateKeyError:
        raise ConflictError("Property already in wishlist")
    return {"id": new_id}


@app.delete("/wishlist/{entry_id}")
def remove_from_wishlist(entry_id: str, db: Database = Depends(get_db)):
    return delete_by_id(db, WISHLIST, entry_id, "Wishlist entry")


# ---------- Offers ----------
class OfferCreate(Offer):
    pass


class OfferStatusUpdate(BaseModel):
    status: Literal["accepted", "rejected", "bought"]
    transaction_Id: Optional[str] = None


@app.get("/make-offer")
def list_offers(
    agent_email: Optional[str] = None,
    buyer_email: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return offers.list_offers(db, agent_email=agent_email, buyer_email=buyer_email)


@app.get("/make-offer/{offer_id}")
def get_offer(offer_id: str, db: Database = Depends(get_db)):
    return find_by_id(db, OFFERS, offer_id, "Offer")


@app.post("/make-offer", response_model=IdResponse)
def make_offer(req: OfferCreate, db: Database = Depends(get_db)):
    return {"id": offers.create_offer(db, req)}


@app.patch("/make-offer/{offer_id}")
def update_offer_status(
    offer_id: str,
    body: OfferStatusUpdate,
    principal: Principal = Depends(current_principal),
    db: Database = Depends(get_db),
):
    if body.status == "accepted":
        authorize_offer_party(db, offer_id, principal, "agent_email")
        return offers.accept_offer(db, offer_id)
    if body.status == "rejected":
        authorize_offer_party(db, offer_id, principal, "agent_email")
        return offers.reject_offer(db, offer_id)
    if not body.transaction_Id:
        raise ValidationError("transaction_Id is required to mark an offer bought")
    authorize_offer_party(db, offer_id, principal, "buyerEmail")
    return offers.mark_bought(db, offer_id, body.transaction_Id)


@app.delete("/make-offer/{offer_id}")
def delete_offer(offer_id: str, db: Database = Depends(get_db)):
    offers.delete_offer(db, offer_id)
    return {"deleted": True}


@app.put("/offers/{offer_id}/accept")
def accept_offer(
    offer_id: str,
    principal: Principal = Depends(current_principal),
    db: Database = Depends(get_db),
):
    authorize_offer_party(db, offer_id, principal, "agent_email")
    return offers.accept_offer(db, offer_id)


@app.put("/offers/{offer_id}/reject")
def reject_offer(
    offer_id: str,
    principal: Principal = Depends(current_principal),
    db: Database = Depends(get_db),
):
    authorize_offer_party(db, offer_id, principal, "agent_email")
    return offers.reject_offer(db, offer_id)


# ---------- Payments ----------
class PaymentConfirmation(BaseModel):
    transaction_Id: str = Field(..., min_length=1)
    paidAt: Optional[datetime] = None
    title: Optional[str] = None
    agent_name: Optional[str] = None


class PaymentIntentRequest(BaseModel):
    amountInCents: int = Field(..., gt=0)
    parcelId: Optional[str] = None


@app.get("/payment-history")
def payment_history(
    email: Optional[str] = None,
    property_id: Optional[str] = Query(None, alias="propertyId"),
    offer_id: Optional[str] = Query(None, alias="offerId"),
    db: Database = Depends(get_db),
):
    filt = {}
    if email:
        filt["buyerEmail"] = email
    if property_id:
        filt["propertyId"] = property_id
    if offer_id:
        filt["offerId"] = str(to_object_id(offer_id))
    return get_documents(db, PAYMENTS, filt, sort=[("paidAt", -1)])


@app.put("/payment/{offer_id}/paid")
def record_payment(
    offer_id: str,
    body: PaymentConfirmation,
    principal: Principal = Depends(current_principal),
    db: Database = Depends(get_db),
):
    authorize_offer_party(db, offer_id, principal, "buyerEmail")
    return offers.mark_bought(
        db,
        offer_id,
        body.transaction_Id,
        paid_at=body.paidAt,
        extra=body.model_dump(include={"title", "agent_name"}, exclude_none=True),
    )


@app.post("/create-payment-intent")
def create_payment_intent(req: PaymentIntentRequest, gateway: PaymentGateway = Depends(get_payment_gateway)):
    key = intent_idempotency_key(req.parcelId, req.amountInCents)
    logger.info("Creating payment intent for %s (%d)", req.parcelId, req.amountInCents)
    secret = gateway.create_intent(req.amountInCents, settings.payment_currency, idempotency_key=key)
    return {"clientSecret": secret}


# ---------- Reviews ----------
class ReviewCreate(Review):
    pass


@app.get("/reviews")
def list_reviews(property_id: Optional[str] = Query(None, alias="propertyId"), db: Database = Depends(get_db)):
    filt = {"propertyId": property_id} if property_id else {}
    return get_documents(db, REVIEWS, filt, sort=[("createdAt", -1)])


@app.get("/reviews/{email}")
def list_reviews_by_reviewer(email: str, db: Database = Depends(get_db)):
    return get_documents(db, REVIEWS, {"reviewer_email": email})


@app.get("/latest-review")
def latest_reviews(limit: int = Query(4, ge=1, le=50), db: Database = Depends(get_db)):
    return get_documents(db, REVIEWS, sort=[("createdAt", -1)], limit=limit)


@app.post("/reviews", response_model=IdResponse)
def create_review(
    req: ReviewCreate,
    principal: Principal = Depends(current_principal),
    db: Database = Depends(get_db),
):
    if not principal.email:
        raise ForbiddenError("Token carries no email")
    if not db[PROPERTIES].find_one({"_id": to_object_id(req.propertyId)}):
        raise NotFoundError("Property not found")
    doc = req.model_dump()
    doc["reviewer_email"] = principal.email
    doc["createdAt"] = now_utc()
    new_id = create_document(db, REVIEWS, doc)
    return {"id": new_id}


@app.delete("/reviews/{review_id}")
def delete_review(review_id: str, db: Database = Depends(get_db)):
    return delete_by_id(db, REVIEWS, review_id, "Review")


# ---------- Identity accounts ----------
@app.delete("/firebase-users/{uid}")
def delete_identity_account(uid: str, verifier: IdentityVerifier = Depends(get_identity_verifier)):
    verifier.delete_user(uid)
    logger.info("Identity account %s deleted", uid)
    return {"success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
