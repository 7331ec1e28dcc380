"""
ドメインイベント定義

イベントはドメインで起きた事実。過去形で命名し、不変(immutable)として扱う。
フィールド名はワイヤ上の JSON キーそのもの。
"""

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import InvalidArgument
from .subjects import Subjects


class DomainEvent(BaseModel):
    model_config = ConfigDict(frozen=True)


class UserCreated(DomainEvent):
    """ユーザーが登録された"""
    id: str
    name: str
    email: str


class BookCreated(DomainEvent):
    """書籍がカタログに追加された"""
    id: str
    title: str
    author: str


class OrderCreated(DomainEvent):
    """注文が作成された"""
    order_id: str
    user_id: str
    book_ids: list[str]


class OrderCompleted(DomainEvent):
    """注文が返却され完了した"""
    order_id: str
    user_id: str
    book_ids: list[str]


class OrderDeleted(DomainEvent):
    """注文が削除された"""
    order_id: str
    user_id: str
    book_ids: list[str]


class ExchangeCreated(DomainEvent):
    """交換オファーが作成された"""
    offer_id: str
    owner_id: str | None = None
    counterparty_id: str | None = None


class ExchangeAccepted(DomainEvent):
    """交換オファーが承認された"""
    offer_id: str
    owner_id: str
    requester_id: str


class ExchangeDeclined(DomainEvent):
    """交換オファーが拒否された"""
    offer_id: str
    owner_id: str


class BookAssigned(DomainEvent):
    """ライブラリに書籍が割り当てられた"""
    user_id: str
    book_id: str


class BookUnassigned(DomainEvent):
    """ライブラリから書籍が外された"""
    user_id: str
    book_id: str


class EntryDeleted(DomainEvent):
    """ライブラリエントリが削除された"""
    id: str
    user_id: str


class EntryUpdated(DomainEvent):
    """ライブラリエントリが更新された"""
    id: str
    user_id: str
    book_id: str


EVENT_TYPES: dict[str, type[DomainEvent]] = {
    Subjects.USER_CREATED: UserCreated,
    Subjects.BOOK_CREATED: BookCreated,
    Subjects.ORDER_CREATED: OrderCreated,
    Subjects.ORDER_COMPLETED: OrderCompleted,
    Subjects.ORDER_DELETED: OrderDeleted,
    Subjects.EXCHANGE_CREATED: ExchangeCreated,
    Subjects.EXCHANGE_ACCEPTED: ExchangeAccepted,
    Subjects.EXCHANGE_DECLINED: ExchangeDeclined,
    Subjects.LIBRARY_BOOK_ASSIGNED: BookAssigned,
    Subjects.LIBRARY_BOOK_UNASSIGNED: BookUnassigned,
    Subjects.LIBRARY_ENTRY_DELETED: EntryDeleted,
    Subjects.LIBRARY_ENTRY_UPDATED: EntryUpdated,
}


def encode_event(subject: str, event: DomainEvent) -> str:
    """イベントをコンパクトな JSON 文字列にする。サブジェクトと型の不一致は拒否する。"""
    expected = EVENT_TYPES.get(subject)
    if expected is None:
        raise InvalidArgument(f"unknown subject: {subject}")
    if not isinstance(event, expected):
        raise InvalidArgument(
            f"{type(event).__name__} cannot be published on {subject}"
        )
    return event.model_dump_json()


def decode_event(subject: str, raw: str | bytes) -> DomainEvent:
    """受信したペイロードをサブジェクトに対応するイベント型に復元する。"""
    event_type = EVENT_TYPES.get(subject)
    if event_type is None:
        raise InvalidArgument(f"unknown subject: {subject}")
    try:
        return event_type.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidArgument(f"malformed {subject} payload: {e}") from e
