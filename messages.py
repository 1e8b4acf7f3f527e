import logging
import re
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo import ReturnDocument

from auth import get_current_user
from database import db, now_utc, oid
from responses import ok, pagination
from schemas import Conversation as ConversationSchema, Message as MessageSchema, MessageType

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])

EDIT_WINDOW_MIN = 15
DELETED_TEXT = "This message was deleted"


class StartConversation(BaseModel):
    participantId: str
    orderId: Optional[str] = None
    itemId: Optional[str] = None
    talentProductId: Optional[str] = None
    message: Optional[str] = Field(None, max_length=1000)


class SendMessage(BaseModel):
    content: str = Field(..., max_length=1000)
    type: MessageType = "text"
    replyTo: Optional[str] = None
    attachments: List[str] = []


class EditMessage(BaseModel):
    content: str = Field(..., max_length=1000)


def participant_key(a, b) -> str:
    return ":".join(sorted((str(a), str(b))))


def unread_filter(user_id, conversation_ids) -> dict:
    return {
        "conversation": {"$in": list(conversation_ids)},
        "sender": {"$ne": user_id},
        "readBy.user": {"$ne": user_id},
        "isDeleted": False,
    }


def _load_conversation(conversation_id: str, user):
    conv = db["conversation"].find_one({"_id": oid(conversation_id)})
    if not conv or not conv.get("isActive", True):
        raise HTTPException(404, "Conversation not found")
    if user["_id"] not in conv["participants"]:
        raise HTTPException(403, "Access denied. You are not a participant in this conversation.")
    return conv


def _load_own_message(message_id: str, user, action: str):
    msg = db["message"].find_one({"_id": oid(message_id)})
    if not msg:
        raise HTTPException(404, "Message not found")
    if msg["sender"] != user["_id"]:
        raise HTTPException(403, f"You can only {action} your own messages")
    if msg["isDeleted"]:
        raise HTTPException(400, "Message has been deleted")
    return msg


def _post_message(conv, sender_id, content: str, type: str = "text", reply_to=None, attachments=None):
    msg = MessageSchema(
        conversation=conv["_id"],
        sender=sender_id,
        content=content,
        type=type,
        replyTo=reply_to,
        attachments=attachments or [],
    )
    doc = msg.model_dump(exclude_none=True)
    doc["created_at"] = doc["updated_at"] = now_utc()
    res = db["message"].insert_one(doc)
    db["conversation"].update_one(
        {"_id": conv["_id"]},
        {"$set": {"lastMessage": res.inserted_id, "lastActivity": doc["created_at"]}},
    )
    return db["message"].find_one({"_id": res.inserted_id})


def _check_related_order(order_id: str, user, other):
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order or {order["buyer"], order["seller"]} != {user["_id"], other["_id"]}:
        raise HTTPException(400, "Order does not belong to both participants")
    return order["_id"]


# Conversations

@router.get("/conversations")
def list_conversations(page: int = 1, limit: int = 20, search: Optional[str] = None, user=Depends(get_current_user)):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = {"participants": user["_id"], "isActive": True}
    if search:
        filt["title"] = {"$regex": re.escape(search), "$options": "i"}
    total = db["conversation"].count_documents(filt)
    conversations = list(
        db["conversation"].find(filt).sort("lastActivity", -1).skip((page - 1) * limit).limit(limit)
    )
    for conv in conversations:
        conv["unreadCount"] = db["message"].count_documents(unread_filter(user["_id"], [conv["_id"]]))
    return ok({"conversations": conversations, "pagination": pagination(page, limit, total)})


@router.post("/conversations")
def start_conversation(payload: StartConversation, user=Depends(get_current_user)):
    other = db["user"].find_one({"_id": oid(payload.participantId)})
    if not other or not other.get("isActive", True):
        raise HTTPException(404, "Participant not found")
    if other["_id"] == user["_id"]:
        raise HTTPException(400, "You cannot start a conversation with yourself")

    related = {}
    if payload.orderId:
        related["relatedOrder"] = _check_related_order(payload.orderId, user, other)
    if payload.itemId:
        related["relatedItem"] = oid(payload.itemId)
    if payload.talentProductId:
        related["relatedTalentProduct"] = oid(payload.talentProductId)

    key = participant_key(user["_id"], other["_id"])
    stamp = now_utc()
    fresh = ConversationSchema(
        participants=[user["_id"], other["_id"]],
        participantKey=key,
        lastActivity=stamp,
        createdBy=user["_id"],
        **related,
    ).model_dump(exclude_none=True, exclude={"participantKey"})
    fresh["created_at"] = fresh["updated_at"] = stamp
    # one conversation per pair of users, created on first contact
    conv = db["conversation"].find_one_and_update(
        {"participantKey": key},
        {"$setOnInsert": fresh},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )

    text = (payload.message or "").strip()
    if text:
        _post_message(conv, user["_id"], text)
        conv = db["conversation"].find_one({"_id": conv["_id"]})
    return ok({"conversation": conv}, "Conversation created/found successfully")


@router.get("/conversations/{conversation_id}")
def get_conversation(conversation_id: str, user=Depends(get_current_user)):
    conv = _load_conversation(conversation_id, user)
    conv["unreadCount"] = db["message"].count_documents(unread_filter(user["_id"], [conv["_id"]]))
    return ok({"conversation": conv})


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    page: int = 1,
    limit: int = 50,
    before: Optional[str] = None,
    user=Depends(get_current_user),
):
    conv = _load_conversation(conversation_id, user)
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = {"conversation": conv["_id"], "isDeleted": False}
    if before:
        anchor = db["message"].find_one({"_id": oid(before), "conversation": conv["_id"]})
        if anchor:
            filt["created_at"] = {"$lt": anchor["created_at"]}
    total = db["message"].count_documents(filt)
    cursor = db["message"].find(filt).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    newest_first = list(cursor)
    return ok({"messages": newest_first[::-1], "pagination": pagination(page, limit, total)})


@router.post("/conversations/{conversation_id}/messages", status_code=201)
def send_message(conversation_id: str, payload: SendMessage, user=Depends(get_current_user)):
    text = payload.content.strip()
    if not text:
        raise HTTPException(400, "Message content is required")
    conv = _load_conversation(conversation_id, user)
    reply_to = None
    if payload.replyTo:
        reply_to = oid(payload.replyTo)
        if not db["message"].find_one({"_id": reply_to, "conversation": conv["_id"]}):
            raise HTTPException(400, "Replied message is not part of this conversation")
    msg = _post_message(conv, user["_id"], text, payload.type, reply_to, payload.attachments)
    return ok({"message": msg}, "Message sent successfully")


@router.put("/conversations/{conversation_id}/read-all")
def mark_conversation_read(conversation_id: str, user=Depends(get_current_user)):
    conv = _load_conversation(conversation_id, user)
    res = db["message"].update_many(
        unread_filter(user["_id"], [conv["_id"]]),
        {"$push": {"readBy": {"user": user["_id"], "readAt": now_utc()}}},
    )
    return ok(message=f"{res.modified_count} messages marked as read")


@router.get("/unread-count")
def unread_count(user=Depends(get_current_user)):
    ids = [c["_id"] for c in db["conversation"].find({"participants": user["_id"], "isActive": True}, {"_id": 1})]
    return ok({"totalUnread": db["message"].count_documents(unread_filter(user["_id"], ids))})


# Single messages

@router.put("/{message_id}/read")
def mark_message_read(message_id: str, user=Depends(get_current_user)):
    msg = db["message"].find_one({"_id": oid(message_id)})
    if not msg:
        raise HTTPException(404, "Message not found")
    conv = db["conversation"].find_one({"_id": msg["conversation"]})
    if not conv or user["_id"] not in conv["participants"]:
        raise HTTPException(403, "Access denied")
    if msg["sender"] != user["_id"]:
        db["message"].update_one(
            {"_id": msg["_id"], "readBy.user": {"$ne": user["_id"]}},
            {"$push": {"readBy": {"user": user["_id"], "readAt": now_utc()}}},
        )
    return ok(message="Message marked as read")


@router.put("/{message_id}")
def edit_message(message_id: str, payload: EditMessage, user=Depends(get_current_user)):
    text = payload.content.strip()
    if not text:
        raise HTTPException(400, "Message content is required")
    msg = _load_own_message(message_id, user, "edit")
    if msg["created_at"] < now_utc() - timedelta(minutes=EDIT_WINDOW_MIN):
        raise HTTPException(400, "Message is too old to edit")
    stamp = now_utc()
    db["message"].update_one(
        {"_id": msg["_id"], "isDeleted": False},
        {"$set": {"content": text, "isEdited": True, "editedAt": stamp, "updated_at": stamp}},
    )
    return ok({"message": db["message"].find_one({"_id": msg["_id"]})}, "Message updated successfully")


@router.delete("/{message_id}")
def delete_message(message_id: str, user=Depends(get_current_user)):
    msg = _load_own_message(message_id, user, "delete")
    stamp = now_utc()
    db["message"].update_one(
        {"_id": msg["_id"]},
        {"$set": {"isDeleted": True, "deletedAt": stamp, "content": DELETED_TEXT, "updated_at": stamp}},
    )
    log.info("Message %s deleted by %s", msg["_id"], user["_id"])
    return ok(message="Message deleted successfully")
