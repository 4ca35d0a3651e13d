from pydantic import BaseModel, EmailStr, Field


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=255)
    avatar: str | None = Field(None, max_length=500)
    is_active: bool = True
    email_verified: bool = False
    role_ids: list[int] = Field(default_factory=list)


class UserUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    password: str | None = Field(None, min_length=8, max_length=255)
    avatar: str | None = Field(None, max_length=500)
    is_active: bool | None = None
    role_ids: list[int] | None = None


class UserRolesAssign(BaseModel):
    role_ids: list[int]
