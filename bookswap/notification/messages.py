"""
Notification Service — 宛先の決定とメール本文の組み立て

I/O を持たない純粋な関数だけを置く。
宛先ユーザーの ID をイベントのどのフィールドから取るか、件名と本文をどうするかは
サブジェクトごとにここで決める。
"""

from dataclasses import dataclass
from typing import Callable

from bookswap.core.events import (
    BookAssigned,
    BookUnassigned,
    DomainEvent,
    EntryDeleted,
    EntryUpdated,
    ExchangeAccepted,
    ExchangeCreated,
    ExchangeDeclined,
    OrderCompleted,
    OrderCreated,
    OrderDeleted,
    UserCreated,
)
from bookswap.core.subjects import Subjects


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    body: str


# サブジェクト → 宛先ユーザー ID を持つフィールド
# user.created はイベントにメールアドレスが入っているので引かない。
# book.created には宛先になるユーザーがいない。
RECIPIENT_FIELDS: dict[str, str] = {
    Subjects.ORDER_CREATED: "user_id",
    Subjects.ORDER_COMPLETED: "user_id",
    Subjects.ORDER_DELETED: "user_id",
    Subjects.EXCHANGE_CREATED: "counterparty_id",
    Subjects.EXCHANGE_ACCEPTED: "owner_id",
    Subjects.EXCHANGE_DECLINED: "owner_id",
    Subjects.LIBRARY_BOOK_ASSIGNED: "user_id",
    Subjects.LIBRARY_BOOK_UNASSIGNED: "user_id",
    Subjects.LIBRARY_ENTRY_DELETED: "user_id",
    Subjects.LIBRARY_ENTRY_UPDATED: "user_id",
}


def carried_email(event: DomainEvent) -> str | None:
    """イベント自体がメールアドレスを持っていればそれを返す。"""
    if isinstance(event, UserCreated):
        return event.email
    return None


def recipient_id(subject: str, event: DomainEvent) -> str | None:
    field = RECIPIENT_FIELDS.get(subject)
    if field is None:
        return None
    return getattr(event, field, None) or None


# ── 件名と本文 ───────────────────────────────────


def _welcome(e: UserCreated) -> tuple[str, str]:
    return "Welcome to BookSwap!", f"Hello, {e.name}!\n\nThanks for registering."


def _order_created(e: OrderCreated) -> tuple[str, str]:
    return "Your order has been placed", f"Thanks for your order {e.order_id}!"


def _order_completed(e: OrderCompleted) -> tuple[str, str]:
    return "Your order has been returned", f"Order {e.order_id} was marked as returned."


def _order_deleted(e: OrderDeleted) -> tuple[str, str]:
    return "Your order has been deleted", f"Order {e.order_id} was deleted."


def _offer_created(e: ExchangeCreated) -> tuple[str, str]:
    return (
        "You have a new exchange offer",
        f"Exchange offer {e.offer_id} was created for you.",
    )


def _offer_accepted(e: ExchangeAccepted) -> tuple[str, str]:
    return (
        "Your exchange offer was accepted",
        f"Offer {e.offer_id} was accepted by user {e.requester_id}.",
    )


def _offer_declined(e: ExchangeDeclined) -> tuple[str, str]:
    return "Your exchange offer was declined", f"Offer {e.offer_id} was declined."


def _book_assigned(e: BookAssigned) -> tuple[str, str]:
    return "Book Assigned", f"The book {e.book_id} has been assigned to you."


def _book_unassigned(e: BookUnassigned) -> tuple[str, str]:
    return "Book Unassigned", f"The book {e.book_id} has been unassigned from you."


def _entry_deleted(e: EntryDeleted) -> tuple[str, str]:
    return "Library Entry Deleted", f"Your library entry {e.id} was deleted."


def _entry_updated(e: EntryUpdated) -> tuple[str, str]:
    return (
        "Library Entry Updated",
        f"Your library entry {e.id} was updated (new book {e.book_id}).",
    )


TEMPLATES: dict[str, Callable[..., tuple[str, str]]] = {
    Subjects.USER_CREATED: _welcome,
    Subjects.ORDER_CREATED: _order_created,
    Subjects.ORDER_COMPLETED: _order_completed,
    Subjects.ORDER_DELETED: _order_deleted,
    Subjects.EXCHANGE_CREATED: _offer_created,
    Subjects.EXCHANGE_ACCEPTED: _offer_accepted,
    Subjects.EXCHANGE_DECLINED: _offer_declined,
    Subjects.LIBRARY_BOOK_ASSIGNED: _book_assigned,
    Subjects.LIBRARY_BOOK_UNASSIGNED: _book_unassigned,
    Subjects.LIBRARY_ENTRY_DELETED: _entry_deleted,
    Subjects.LIBRARY_ENTRY_UPDATED: _entry_updated,
}


def compose(subject: str, event: DomainEvent, to: str) -> OutgoingEmail | None:
    """メールを組み立てる。テンプレートのないサブジェクトは None。"""
    template = TEMPLATES.get(subject)
    if template is None:
        return None
    title, body = template(event)
    return OutgoingEmail(to=to, subject=title, body=body)
