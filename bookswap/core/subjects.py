"""
バスのサブジェクト定義

発行側と購読側で文字列を重複させないよう、サブジェクト名はここだけで定義する。
リネームはこのファイルの変更だけで両側に反映される。
"""


class Subjects:
    USER_CREATED = "user.created"
    BOOK_CREATED = "book.created"

    ORDER_CREATED = "orders.created"
    ORDER_COMPLETED = "order.completed"
    ORDER_DELETED = "order.deleted"

    EXCHANGE_CREATED = "exchange.created"
    EXCHANGE_ACCEPTED = "exchange.accepted"
    EXCHANGE_DECLINED = "exchange.declined"

    LIBRARY_BOOK_ASSIGNED = "userlibrary.book.assigned"
    LIBRARY_BOOK_UNASSIGNED = "userlibrary.book.unassigned"
    LIBRARY_ENTRY_DELETED = "userlibrary.entry.deleted"
    LIBRARY_ENTRY_UPDATED = "userlibrary.entry.updated"

    ALL: tuple[str, ...] = (
        USER_CREATED,
        BOOK_CREATED,
        ORDER_CREATED,
        ORDER_COMPLETED,
        ORDER_DELETED,
        EXCHANGE_CREATED,
        EXCHANGE_ACCEPTED,
        EXCHANGE_DECLINED,
        LIBRARY_BOOK_ASSIGNED,
        LIBRARY_BOOK_UNASSIGNED,
        LIBRARY_ENTRY_DELETED,
        LIBRARY_ENTRY_UPDATED,
    )
