"""Typed filesystem failures shared by both backends.

Every member carries a fixed JSON-RPC error code so the native bridge can
send it across the process boundary and the client can raise the same type.
"""

from __future__ import annotations

import errno
from collections.abc import Iterator
from contextlib import contextmanager
from typing import ClassVar

from panex.protocol.jsonrpc import JsonRpcFailure


class FsError(Exception):
    code: ClassVar[int] = -32000

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path


class NotFound(FsError):
    code = -32004


class PermissionDenied(FsError):
    code = -32003


class NameConflict(FsError):
    code = -32009


class Cancelled(FsError):
    code = -32010


class BackendUnavailable(FsError):
    code = -32011


class PartialFailure(FsError):
    code = -32012

    def __init__(
        self,
        message: str,
        *,
        succeeded: list[str] | None = None,
        failures: list[tuple[str, FsError]] | None = None,
    ) -> None:
        super().__init__(message)
        self.succeeded = list(succeeded or [])
        self.failures = list(failures or [])

    @property
    def failed_paths(self) -> list[str]:
        return [path for path, _ in self.failures]


_BY_CODE: dict[int, type[FsError]] = {
    cls.code: cls
    for cls in (NotFound, PermissionDenied, NameConflict, Cancelled, BackendUnavailable, PartialFailure)
}


def from_os_error(exc: OSError, path: str | None = None) -> FsError:
    target = path or exc.filename
    target = str(target) if target is not None else None
    detail = exc.strerror or str(exc)
    if isinstance(exc, FileNotFoundError) or exc.errno == errno.ENOENT:
        return NotFound(f"Path does not exist: {target}", path=target)
    if isinstance(exc, PermissionError) or exc.errno in {errno.EACCES, errno.EPERM}:
        return PermissionDenied(f"Permission denied: {target}", path=target)
    if isinstance(exc, FileExistsError) or exc.errno == errno.EEXIST:
        return NameConflict(f"Already exists: {target}", path=target)
    return FsError(f"{detail}: {target}", path=target)


@contextmanager
def translate_os_errors(path: str | None = None) -> Iterator[None]:
    try:
        yield
    except FsError:
        raise
    except OSError as exc:
        raise from_os_error(exc, path) from exc


def to_rpc_failure(exc: FsError) -> JsonRpcFailure:
    data = {"path": exc.path} if exc.path is not None else None
    return JsonRpcFailure(code=exc.code, message=exc.message, data=data)


def from_rpc_failure(failure: JsonRpcFailure) -> FsError:
    cls = _BY_CODE.get(failure.code, FsError)
    path = failure.data.get("path") if isinstance(failure.data, dict) else None
    if cls is PartialFailure:
        return PartialFailure(failure.message)
    return cls(failure.message, path=path)
