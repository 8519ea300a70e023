"""Offer lifecycle: create, accept, reject and purchase.

Offer states move ``pending -> accepted -> bought`` or ``pending|accepted ->
rejected``; ``bought`` and ``rejected`` are final. Every transition is a
conditional update on the current status, so two requests racing on the same
offer cannot both win. Side effects that touch other documents (rejecting
competing offers, recording the payment) run after the transition and are
safe to repeat.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import OFFERS, PAYMENTS, PROPERTIES, now_utc, serialize_doc, to_object_id
from errors import ConflictError, NotFoundError
from schemas import Offer

logger = logging.getLogger(__name__)

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
BOUGHT = "bought"


def _load_offer(db: Database, offer_id: str) -> dict:
    offer = db[OFFERS].find_one({"_id": to_object_id(offer_id)})
    if offer is None:
        raise NotFoundError(f"Offer not found: {offer_id}")
    return offer


def create_offer(db: Database, offer: Offer) -> str:
    """Insert a pending offer for an existing property."""
    prop = db[PROPERTIES].find_one({"_id": to_object_id(offer.propertyId)})
    if prop is None:
        raise NotFoundError(f"Property not found: {offer.propertyId}")

    doc = offer.model_dump()
    doc["propertyId"] = str(prop["_id"])
    doc["status"] = PENDING
    doc["transaction_Id"] = None
    doc["decisionAt"] = None
    doc["paidAt"] = None
    # listing details always come from the property, never from the buyer
    for field in ("agent_email", "agent_name", "title", "location", "image"):
        doc[field] = prop.get(field)
    doc["created_at"] = now_utc()
    result = db[OFFERS].insert_one(doc)
    logger.info("Offer %s created for property %s by %s", result.inserted_id, offer.propertyId, offer.buyerEmail)
    return str(result.inserted_id)


def reject_competing_offers(db: Database, property_id: str, keep_id) -> int:
    """Reject every other still-pending offer on ``property_id``.

    Offers already accepted, bought or rejected are left alone. Safe to re-run.
    """
    result = db[OFFERS].update_many(
        {"propertyId": property_id, "_id": {"$ne": keep_id}, "status": PENDING},
        {"$set": {"status": REJECTED, "decisionAt": now_utc()}},
    )
    return result.modified_count


def accept_offer(db: Database, offer_id: str) -> dict[str, Any]:
    offer = _load_offer(db, offer_id)
    oid = offer["_id"]

    winner = db[OFFERS].find_one(
        {"propertyId": offer["propertyId"], "_id": {"$ne": oid}, "status": {"$in": [ACCEPTED, BOUGHT]}}
    )
    if winner is not None:
        raise ConflictError(f"Property {offer['propertyId']} already has an accepted offer")

    result = db[OFFERS].update_one(
        {"_id": oid, "status": PENDING},
        {"$set": {"status": ACCEPTED, "decisionAt": now_utc()}},
    )
    if result.modified_count == 0:
        current = db[OFFERS].find_one({"_id": oid}) or offer
        raise ConflictError(f"Offer {offer_id} is {current.get('status')}, not pending")

    try:
        rejected: Optional[int] = reject_competing_offers(db, offer["propertyId"], oid)
    except PyMongoError:
        logger.exception("Offer %s accepted but competing offers were not rejected", offer_id)
        rejected = None
    else:
        logger.info("Offer %s accepted, %d competing offers rejected", offer_id, rejected)

    return {"message": "Offer accepted and others rejected", "siblings_rejected": rejected}


def reject_offer(db: Database, offer_id: str) -> dict[str, Any]:
    oid = to_object_id(offer_id)
    result = db[OFFERS].update_one(
        {"_id": oid, "status": {"$in": [PENDING, ACCEPTED]}},
        {"$set": {"status": REJECTED, "decisionAt": now_utc()}},
    )
    if result.modified_count:
        logger.info("Offer %s rejected", offer_id)
        return {"message": "Offer rejected"}

    offer = _load_offer(db, offer_id)
    if offer.get("status") == REJECTED:
        return {"message": "Offer already rejected"}
    raise ConflictError(f"Offer {offer_id} is {offer.get('status')} and cannot be rejected")


def mark_bought(
    db: Database,
    offer_id: str,
    transaction_id: str,
    paid_at: Optional[datetime] = None,
    extra: Optional[dict] = None,
) -> dict[str, Any]:
    """Mark an accepted offer as bought and record its payment.

    Replaying the call with the same ``transaction_id`` completes a previous
    attempt that stopped between the two writes.
    """
    oid = to_object_id(offer_id)
    offer_id = str(oid)
    paid_at = paid_at or now_utc()

    existing = db[PAYMENTS].find_one({"transaction_Id": transaction_id})
    if existing is not None and existing.get("offerId") != offer_id:
        raise ConflictError(f"Transaction {transaction_id} already belongs to offer {existing.get('offerId')}")

    result = db[OFFERS].update_one(
        {"_id": oid, "status": ACCEPTED},
        {"$set": {"status": BOUGHT, "transaction_Id": transaction_id, "paidAt": paid_at}},
    )
    offer = _load_offer(db, offer_id)
    if result.modified_count == 0:
        if offer.get("status") != BOUGHT or offer.get("transaction_Id") != transaction_id:
            raise ConflictError(f"Offer {offer_id} is {offer.get('status')}, not accepted")
        logger.info("Replaying payment record for offer %s (%s)", offer_id, transaction_id)

    extra = extra or {}
    payment = {
        "offerId": offer_id,
        "propertyId": offer.get("propertyId"),
        "title": offer.get("title") or extra.get("title"),
        "agent_name": offer.get("agent_name") or extra.get("agent_name"),
        "buyerEmail": offer.get("buyerEmail"),
        "buyerName": offer.get("buyerName"),
        "offerAmount": offer.get("offerAmount"),
        "paidAt": offer.get("paidAt") or paid_at,
    }
    try:
        upsert = db[PAYMENTS].update_one(
            {"transaction_Id": transaction_id},
            {"$setOnInsert": payment},
            upsert=True,
        )
    except DuplicateKeyError:
        # a concurrent replay inserted it first
        upsert = None
    payment_doc = db[PAYMENTS].find_one({"transaction_Id": transaction_id})
    if payment_doc is None:
        raise ConflictError(f"Payment {transaction_id} could not be recorded")

    if upsert is not None and upsert.upserted_id is not None:
        logger.info("Payment %s recorded for offer %s", transaction_id, offer_id)
    return {
        "success": True,
        "message": "Payment recorded and offer marked as bought",
        "paymentId": str(payment_doc["_id"]),
    }


def delete_offer(db: Database, offer_id: str) -> None:
    result = db[OFFERS].delete_one({"_id": to_object_id(offer_id)})
    if result.deleted_count == 0:
        raise NotFoundError(f"Offer not found: {offer_id}")


def list_offers(db: Database, agent_email: Optional[str] = None, buyer_email: Optional[str] = None) -> list[dict]:
    query: dict[str, Any] = {}
    if agent_email:
        query["agent_email"] = agent_email
    if buyer_email:
        query["buyerEmail"] = buyer_email
    return [serialize_doc(d) for d in db[OFFERS].find(query)]
