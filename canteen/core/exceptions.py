"""
业务异常定义

每个异常携带面向用户的错误信息和HTTP状态码，由 api.exceptions 中的处理器统一转换为
{"error": message} 响应体。
"""


class BusinessException(Exception):
    """业务异常基类"""

    status_code = 400
    error_code = "business_error"
    default_message = "请求处理失败"

    def __init__(self, message: str = None, status_code: int = None, error_code: str = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


class ValidationException(BusinessException):
    """请求参数不合法"""
    status_code = 400
    error_code = "validation_error"
    default_message = "请求参数不合法"


class NotFoundException(BusinessException):
    """引用的实体不存在"""
    status_code = 404
    error_code = "not_found"
    default_message = "资源不存在"


class OwnershipException(BusinessException):
    """操作者无权处理该资源"""
    status_code = 403
    error_code = "forbidden"
    default_message = "无权执行该操作"


class ConflictException(BusinessException):
    """资源当前状态不允许该操作"""
    status_code = 400
    error_code = "conflict"
    default_message = "当前状态不允许该操作"


class NoUpdatableFields(ValidationException):
    error_code = "no_updatable_fields"
    default_message = "没有可更新的字段"


class SequenceExhausted(ValidationException):
    error_code = "sequence_exhausted"
    default_message = "该档口当日订单序号已用尽"


class OrderNotFound(NotFoundException):
    error_code = "order_not_found"
    default_message = "订单不存在"


class StudentNotFound(NotFoundException):
    error_code = "student_not_found"
    default_message = "学生不存在"


class OrderOwnershipMismatch(OwnershipException):
    error_code = "order_ownership_mismatch"
    default_message = "订单不属于该学生"


class OrderNotPayable(ConflictException):
    error_code = "order_not_payable"
    default_message = "订单已支付或状态不正确"


class InsufficientBalance(ConflictException):
    error_code = "insufficient_balance"
    default_message = "余额不足"


class IllegalStatusTransition(ConflictException):
    error_code = "illegal_status_transition"
    default_message = "订单状态不可回退"
