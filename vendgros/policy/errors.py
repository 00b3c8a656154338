# 정책 로딩 에러 타입


class PolicyConfigError(RuntimeError):
    pass


class PolicyValidationError(PolicyConfigError, ValueError):
    pass
