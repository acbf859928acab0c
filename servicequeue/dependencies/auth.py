from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Annotated, Protocol

from fastapi import Depends, HTTPException, Request

from servicequeue.core.config import get_settings

PIN_HEADERS = ("x-staff-pin", "x-admin-pin")


class StaffUser:
    """Authenticated staff member operating a counter."""

    def __init__(self, user_id: str, name: str | None = None):
        self.id = user_id
        self.name = name


@dataclass(slots=True)
class AuthResult:
    user: StaffUser | None = None
    status_code: int = 200
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.user is not None

    @classmethod
    def allow(cls, user: StaffUser) -> "AuthResult":
        return cls(user=user)

    @classmethod
    def deny(cls, status_code: int, message: str) -> "AuthResult":
        return cls(user=None, status_code=status_code, message=message)


class AuthGate(Protocol):
    async def authorize(self, request: Request) -> AuthResult:
        ...


class PinAuthGate:
    """Accept requests that present the shared staff PIN in a header."""

    def __init__(self, pin: str | None) -> None:
        self._pin = pin

    async def authorize(self, request: Request) -> AuthResult:
        if not self._pin:
            return AuthResult.deny(401, "Unauthorized")
        for header in PIN_HEADERS:
            presented = request.headers.get(header)
            if presented and secrets.compare_digest(presented.encode(), self._pin.encode()):
                return AuthResult.allow(StaffUser("pin-user"))
        return AuthResult.deny(401, "Unauthorized")


async def get_auth_gate(request: Request) -> AuthGate:
    gate = getattr(request.app.state, "auth_gate", None)
    if gate is None:
        gate = PinAuthGate(get_settings().staff_pin)
    return gate


async def require_staff(request: Request, gate: Annotated[AuthGate, Depends(get_auth_gate)]) -> StaffUser:
    """Run the auth gate before any staff operation; short-circuit on failure."""

    result = await gate.authorize(request)
    if result.user is None:
        raise HTTPException(status_code=result.status_code, detail=result.message)
    return result.user


CurrentStaff = Annotated[StaffUser, Depends(require_staff)]
