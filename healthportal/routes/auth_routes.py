from fastapi import APIRouter, Depends

from healthportal.auth.dependencies import Principal, get_current_principal

router = APIRouter(tags=["auth"])


@router.get("/me", response_model=Principal)
def me(principal: Principal = Depends(get_current_principal)):
    return principal
