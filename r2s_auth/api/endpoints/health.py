from fastapi import APIRouter, status

from r2s_auth.schemas.auth import CamelModel

router = APIRouter()


class HealthCheck(CamelModel):
    status: str = "ok"


@router.get("/health", tags=["Health"], response_model=HealthCheck, status_code=status.HTTP_200_OK)
def get_health() -> HealthCheck:
    return HealthCheck(status="ok")
