"""
共通エラー定義

全サービスが共有する例外階層。
ビジネスロジックはこの階層の例外だけを送出し、
HTTP 層 (http.py) がステータスコードへ変換する。

CacheDegraded / BusDegraded は上位へは伝播させず、
リポジトリ・イベント発行側でログに記録して握りつぶす。
"""


class BookSwapError(Exception):
    """全ドメイン例外の基底クラス"""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class InvalidArgument(BookSwapError):
    """不正な ID・必須フィールド欠落"""


class NotFound(BookSwapError):
    """ストアにエンティティが存在しない"""


class Conflict(BookSwapError):
    """一意制約違反 (例: メールアドレスの重複)"""


class InvalidTransition(Conflict):
    """終端状態からの状態遷移が拒否された"""


class StoreUnavailable(BookSwapError):
    """ストアの I/O 障害"""


class CacheDegraded(BookSwapError):
    """キャッシュの I/O 障害（ログのみ、上位へは伝播しない）"""


class BusDegraded(BookSwapError):
    """バスへの publish 失敗（ログのみ、上位へは伝播しない）"""


class DownstreamUnavailable(BookSwapError):
    """他サービスへのリモート呼び出し失敗"""
