from pydantic import BaseModel, EmailStr, model_validator


class LoginRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {"email": "pharmacist@example.com", "password": "S3cretPass"},
                {"username_or_email": "pharmacist", "password": "S3cretPass"},
            ]
        }
    }

    email: EmailStr | None = None
    username_or_email: str | None = None
    password: str

    @model_validator(mode="after")
    def ensure_identifier(self):
        if not self.email and not self.username_or_email:
            raise ValueError("email or username_or_email is required")
        return self


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    trace_id: str


class UserResponse(BaseModel):
    id: str
    organization_id: str
    department_id: str | None
    username: str
    email: str
    first_name: str | None
    last_name: str | None
    role: str
    status: str
    is_active: bool
    trace_id: str
