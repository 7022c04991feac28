"""
全局策略和费率规则路由
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends

from ...core.error_handler import create_success_response
from ...core.security import get_actor
from ...models.policy import PolicySettings, RateRule, RateRuleInput, RateRuleUpdate
from ...models.user import Actor
from ...services import ServiceContainer, get_services

router = APIRouter()


@router.get("", response_model=PolicySettings)
def get_settings(services: ServiceContainer = Depends(get_services)):
    return services.policy.get_settings()


@router.patch("", response_model=PolicySettings)
def update_settings(updates: Dict[str, Any] = Body(...), actor: Actor = Depends(get_actor),
                    services: ServiceContainer = Depends(get_services)):
    """按策略段深度合并，例如 {"cutoff_times": {"lunch": 9}}"""
    return services.policy.update_settings(updates, actor)


@router.post("/rate-rules/enabled", response_model=PolicySettings)
def set_rate_rules_enabled(enabled: bool = Body(..., embed=True), actor: Actor = Depends(get_actor),
                           services: ServiceContainer = Depends(get_services)):
    return services.policy.set_rate_rules_enabled(enabled, actor)


@router.get("/rate-rules", response_model=List[RateRule])
def list_rate_rules(services: ServiceContainer = Depends(get_services)):
    return services.policy.list_rate_rules()


@router.post("/rate-rules", response_model=RateRule)
def add_rate_rule(data: RateRuleInput, actor: Actor = Depends(get_actor),
                  services: ServiceContainer = Depends(get_services)):
    return services.policy.add_rate_rule(data, actor)


@router.get("/rate-rules/{rule_id}", response_model=RateRule)
def get_rate_rule(rule_id: str, services: ServiceContainer = Depends(get_services)):
    return services.policy.get_rate_rule(rule_id)


@router.patch("/rate-rules/{rule_id}", response_model=RateRule)
def update_rate_rule(rule_id: str, data: RateRuleUpdate, actor: Actor = Depends(get_actor),
                     services: ServiceContainer = Depends(get_services)):
    return services.policy.update_rate_rule(rule_id, data, actor)


@router.post("/rate-rules/{rule_id}/toggle", response_model=RateRule)
def toggle_rate_rule(rule_id: str, actor: Actor = Depends(get_actor),
                     services: ServiceContainer = Depends(get_services)):
    return services.policy.toggle_rate_rule(rule_id, actor)


@router.delete("/rate-rules/{rule_id}")
def delete_rate_rule(rule_id: str, actor: Actor = Depends(get_actor),
                     services: ServiceContainer = Depends(get_services)):
    services.policy.delete_rate_rule(rule_id, actor)
    return create_success_response(message="费率规则已删除")
