"""User Service — エンティティとリクエストモデル"""

from pydantic import BaseModel


class User(BaseModel):
    id: str
    name: str
    email: str
    # 不透明な値としてそのまま保持する（認証は扱わない）
    password: str = ""


class CreateUserRequest(BaseModel):
    name: str
    email: str
    password: str = ""
