"""
用户管理路由
"""

from typing import List

from fastapi import APIRouter, Depends

from ...core.security import get_actor
from ...models.user import Actor, User, UserCreate
from ...services import ServiceContainer, get_services

router = APIRouter()


@router.get("", response_model=List[User])
def list_users(actor: Actor = Depends(get_actor),
               services: ServiceContainer = Depends(get_services)):
    """在用用户列表"""
    return services.users.list_users()


@router.post("", response_model=User)
def create_user(data: UserCreate, actor: Actor = Depends(get_actor),
                services: ServiceContainer = Depends(get_services)):
    return services.users.create_user(data, actor)


@router.get("/{user_id}", response_model=User)
def get_user(user_id: int, actor: Actor = Depends(get_actor),
             services: ServiceContainer = Depends(get_services)):
    return services.users.get_user(user_id)


@router.post("/{user_id}/deactivate", response_model=User)
def deactivate_user(user_id: int, actor: Actor = Depends(get_actor),
                    services: ServiceContainer = Depends(get_services)):
    return services.users.set_active(user_id, False, actor)


@router.post("/{user_id}/activate", response_model=User)
def activate_user(user_id: int, actor: Actor = Depends(get_actor),
                  services: ServiceContainer = Depends(get_services)):
    return services.users.set_active(user_id, True, actor)
