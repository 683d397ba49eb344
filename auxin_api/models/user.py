from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class EmailRequest(BaseModel):
    email: str = Field(..., min_length=1)


class OtpVerificationRequest(BaseModel):
    email: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)


class GoogleCallbackRequest(BaseModel):
    code: Optional[str] = None


class RefreshTokenRequest(BaseModel):
    token: Optional[str] = None


class UserOut(BaseModel):
    """Public view of a user document. Password and code fields never leave the server."""
    id: str
    name: str
    email: str
    avatar: str = ""
    isEmailVerified: bool = False

    @classmethod
    def from_document(cls, doc: dict) -> "UserOut":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name", ""),
            email=doc["email"],
            avatar=doc.get("avatar") or "",
            isEmailVerified=bool(doc.get("isEmailVerified", False)),
        )


def public_user(doc: dict) -> dict:
    return UserOut.from_document(doc).model_dump()
