"""
自定义异常类
按错误类别（校验 / 策略 / 授权 / 不存在 / 存储）划分，便于调用方区分处理
"""

from typing import Any, Dict, Optional


class BaseApplicationError(Exception):
    """应用基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class DatabaseError(BaseApplicationError):
    """数据库相关异常"""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ConcurrencyError(BaseApplicationError):
    """并发控制错误"""

    def __init__(self, message: str = "系统繁忙，请稍后重试"):
        super().__init__(message, "CONCURRENCY_CONFLICT")


class ValidationError(BaseApplicationError):
    """数据验证异常：在访问存储之前即被拒绝"""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class PolicyError(BaseApplicationError):
    """业务策略拒绝（已结账月份、冻结余额、重复冲正等）

    reason 为机器可读的原因码，例如 ``month_finalized``。
    """

    def __init__(self, reason: str, message: str, details: Dict[str, Any] = None):
        self.reason = reason
        merged = {"reason": reason}
        merged.update(details or {})
        super().__init__(message, "POLICY_VIOLATION", merged)


class PermissionDeniedError(BaseApplicationError):
    """权限拒绝错误"""

    def __init__(self, message: str = "权限不足", required_role: Optional[str] = None):
        details = {"required_role": required_role} if required_role else {}
        super().__init__(message, "PERMISSION_DENIED", details)


class NotFoundError(BaseApplicationError):
    """资源不存在"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} 不存在: {identifier}",
            "RESOURCE_NOT_FOUND",
            {"resource": resource, "id": str(identifier)},
        )
        self.resource = resource
