class ChManagerError(Exception):
    """Base exception for chmanager."""


class ConnectivityError(ChManagerError):
    pass


class ExecutionError(ChManagerError):
    pass


class TableNotFoundError(ExecutionError):
    pass


class DecodeError(ChManagerError):
    pass


class QueryTimeoutError(ChManagerError):
    pass


class UnknownConnectionError(ChManagerError):
    pass


def describe_exception(exc: BaseException) -> str:
    """
    Render driver exceptions the same way for both protocols.
    Server-side exceptions carry a numeric code; everything else is str(exc).
    """
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)
    if isinstance(code, int) and code:
        return "clickhouse exception: [%d] %s" % (code, message.strip())
    return message.strip() or exc.__class__.__name__
