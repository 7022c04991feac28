"""
全局策略服务
单例策略文档的读取（懒创建）、深度合并更新和费率规则维护

缓存约定：进程内缓存最近读取的策略，任何写操作成功后立即失效；
写入按版本号做乐观并发控制，版本不匹配时抛出 ConcurrencyError
"""

import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import ConcurrencyError, NotFoundError, ValidationError
from ..core.security import require_role
from ..models.policy import PolicySettings, RateRule, RateRuleInput, RateRuleUpdate
from ..models.user import Actor, Role
from ..repositories import AuditRepository, PolicyRepository

logger = logging.getLogger(__name__)

EDITABLE_SECTIONS = {
    "weekend_policy",
    "holiday_policy",
    "cutoff_times",
    "default_meal_status",
    "default_rates",
    "rate_rules",
}


def deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """字典递归合并，列表和标量直接替换"""
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class PolicyService:
    """策略存储服务"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 policies: Optional[PolicyRepository] = None,
                 audit: Optional[AuditRepository] = None):
        self.db = db or db_manager
        self.policies = policies or PolicyRepository(self.db)
        self.audit = audit or AuditRepository(self.db)
        self._cache: Optional[PolicySettings] = None
        self._cache_lock = threading.Lock()

    def get_settings(self) -> PolicySettings:
        """读取策略；不存在时创建默认文档"""
        with self._cache_lock:
            if self._cache is not None:
                return self._cache
        row = self.policies.get()
        if row is None:
            self.policies.create_if_absent(PolicySettings().document())
            row = self.policies.get()
        settings = self._parse(row)
        with self._cache_lock:
            self._cache = settings
        return settings

    def invalidate(self):
        with self._cache_lock:
            self._cache = None

    @staticmethod
    def _parse(row: Dict[str, Any]) -> PolicySettings:
        data = dict(row["document"])
        data["version"] = row["version"]
        data["modified_by"] = row["modified_by"]
        return PolicySettings.model_validate(data)

    def _write(self, actor: Actor, action: str,
               change: Callable[[Dict[str, Any]], Dict[str, Any]]) -> PolicySettings:
        """读取当前文档、应用变更、校验并按版本写回"""
        require_role(actor, Role.ADMIN)
        self.invalidate()
        current = self.get_settings()
        before = current.document()
        try:
            updated = PolicySettings.model_validate(change(copy.deepcopy(before)))
        except PydanticValidationError as e:
            errors = e.errors(include_url=False, include_context=False, include_input=False)
            raise ValidationError("策略设置校验失败", {"errors": errors})
        after = updated.document()
        with self.db.transaction():
            version = self.policies.save(after, current.version, actor.user_id)
            if version is None:
                raise ConcurrencyError("策略已被其他操作修改，请刷新后重试")
            self.audit.record("policy", "global", action, actor.user_id,
                              before=before, after=after)
        self.invalidate()
        logger.info("policy %s by %s, version %s", action, actor.user_id, version)
        return self.get_settings()

    def update_settings(self, updates: Dict[str, Any], actor: Actor) -> PolicySettings:
        """深度合并更新任意策略段"""
        unknown = set(updates) - EDITABLE_SECTIONS
        if unknown:
            raise ValidationError("存在不可修改的策略字段", {"fields": sorted(unknown)})
        return self._write(actor, "update", lambda doc: deep_merge(doc, updates))

    def set_rate_rules_enabled(self, enabled: bool, actor: Actor) -> PolicySettings:
        return self.update_settings({"rate_rules": {"enabled": enabled}}, actor)

    # ---- 费率规则 ----

    def list_rate_rules(self) -> List[RateRule]:
        return list(self.get_settings().rate_rules.rules)

    def get_rate_rule(self, rule_id: str) -> RateRule:
        for rule in self.get_settings().rate_rules.rules:
            if rule.id == rule_id:
                return rule
        raise NotFoundError("费率规则", rule_id)

    def add_rate_rule(self, data: RateRuleInput, actor: Actor) -> RateRule:
        rule = RateRule(**data.model_dump())

        def change(doc):
            doc["rate_rules"]["rules"].append(rule.model_dump(mode="json"))
            return doc

        self._write(actor, "add_rate_rule", change)
        return self.get_rate_rule(rule.id)

    def update_rate_rule(self, rule_id: str, data: RateRuleUpdate, actor: Actor) -> RateRule:
        patch = data.model_dump(mode="json", exclude_unset=True)

        def change(doc):
            return self._replace_rule(doc, rule_id, lambda rule: deep_merge(rule, patch))

        self._write(actor, "update_rate_rule", change)
        return self.get_rate_rule(rule_id)

    def toggle_rate_rule(self, rule_id: str, actor: Actor) -> RateRule:
        def flip(rule):
            rule["is_active"] = not rule["is_active"]
            return rule

        self._write(actor, "toggle_rate_rule", lambda doc: self._replace_rule(doc, rule_id, flip))
        return self.get_rate_rule(rule_id)

    def delete_rate_rule(self, rule_id: str, actor: Actor) -> None:
        def change(doc):
            rules = doc["rate_rules"]["rules"]
            remaining = [r for r in rules if r["id"] != rule_id]
            if len(remaining) == len(rules):
                raise NotFoundError("费率规则", rule_id)
            doc["rate_rules"]["rules"] = remaining
            return doc

        self._write(actor, "delete_rate_rule", change)

    @staticmethod
    def _replace_rule(doc: Dict[str, Any], rule_id: str,
                      fn: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
        rules = doc["rate_rules"]["rules"]
        for i, rule in enumerate(rules):
            if rule["id"] == rule_id:
                rules[i] = fn(rule)
                return doc
        raise NotFoundError("费率规则", rule_id)
