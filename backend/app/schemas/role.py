from pydantic import BaseModel, Field


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    is_system: bool = False
    permission_ids: list[int] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    is_system: bool | None = None
    permission_ids: list[int] | None = None


class RolePermissionsAssign(BaseModel):
    permission_ids: list[int]
