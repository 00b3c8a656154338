# vendgros/errors.py
# 도메인 예외. HTTP 변환은 routers 쪽에서 한다.


class NotFoundError(Exception):
    pass


class ConflictError(Exception):
    pass


class ForbiddenError(Exception):
    pass


class ValidationError(Exception):
    pass


class PaymentGatewayError(Exception):
    pass


class MessageDecryptionError(Exception):
    pass


class ImpersonationConfigError(RuntimeError):
    pass
