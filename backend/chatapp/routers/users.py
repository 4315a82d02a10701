from fastapi import APIRouter, Depends, Response

from ..deps import Services, get_current_user, get_services, require_admin
from ..models import User
from ..schemas import UserCreate, UserOut, UserUpdate

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserOut, status_code=201, dependencies=[Depends(require_admin)])
async def create_user(payload: UserCreate, services: Services = Depends(get_services)):
    return await services.users.create(payload)


@router.get("", response_model=list[UserOut])
async def list_users(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return await services.users.list_except(user.id)


@router.get("/{user_id}", response_model=UserOut, dependencies=[Depends(require_admin)])
async def get_user(user_id: int, services: Services = Depends(get_services)):
    return await services.users.get(user_id)


@router.put("/{user_id}", response_model=UserOut, dependencies=[Depends(require_admin)])
async def update_user(user_id: int, payload: UserUpdate, services: Services = Depends(get_services)):
    return await services.users.update(user_id, payload)


@router.delete("/{user_id}", status_code=204, dependencies=[Depends(require_admin)])
async def delete_user(user_id: int, services: Services = Depends(get_services)):
    await services.users.remove(user_id)
    return Response(status_code=204)
