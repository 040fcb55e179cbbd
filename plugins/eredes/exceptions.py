class EredesException(Exception):
    pass


class ConfigError(EredesException):
    pass


class AuthError(EredesException):
    pass


class FetchError(EredesException):
    pass


class ParseError(EredesException):
    pass
