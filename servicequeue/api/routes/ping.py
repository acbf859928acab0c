from fastapi import APIRouter

from servicequeue.dependencies.auth import CurrentStaff

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/secure", summary="Staff-gated health probe")
async def secure_ping(user: CurrentStaff) -> dict[str, str]:
    return {"status": "ok", "user": user.id}
