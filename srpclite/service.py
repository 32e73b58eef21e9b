"""Mapping of plain objects onto RPC services and their methods."""

from __future__ import annotations

import builtins
import inspect
import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)


def is_exported(name: str) -> bool:
    """Return True when ``name`` starts with an upper-case letter."""
    return bool(name) and name[0].isupper()


def _is_exported_or_builtin(tp: Any) -> bool:
    if tp is None:
        return True
    if isinstance(tp, str):
        name = tp.split("[", 1)[0].strip().rsplit(".", 1)[-1]
        if not name or name == "None":
            return True
        return is_exported(name) or hasattr(builtins, name)
    if not isinstance(tp, type):
        return True
    return is_exported(tp.__name__) or tp.__module__ == "builtins"


class MethodType:
    """A callable RPC method together with its argument and reply types."""

    def __init__(
        self,
        name: str,
        func: Callable[[Any, Any], Any],
        arg_type: Any = None,
        reply_type: Any = None,
    ) -> None:
        self.name = name
        self.func = func
        self.arg_type = arg_type
        self.reply_type = reply_type
        self._num_calls = 0
        self._lock = threading.Lock()

    @property
    def num_calls(self) -> int:
        """How many times the method has been invoked."""
        with self._lock:
            return self._num_calls

    def _count_call(self) -> None:
        with self._lock:
            self._num_calls += 1

    def __repr__(self) -> str:
        return f"MethodType({self.name!r}, calls={self.num_calls})"


def _method_type(name: str, func: Callable[..., Any]) -> MethodType | None:
    code = getattr(func, "__code__", None)
    if code is None:
        return None
    if code.co_flags & (inspect.CO_VARARGS | inspect.CO_VARKEYWORDS):
        return None
    if code.co_kwonlyargcount:
        return None
    # self plus exactly one positional argument
    if code.co_argcount != 2:
        return None
    annotations = getattr(func, "__annotations__", None) or {}
    arg_type = annotations.get(code.co_varnames[1])
    reply_type = annotations.get("return")
    if not _is_exported_or_builtin(arg_type) or not _is_exported_or_builtin(
        reply_type
    ):
        return None
    return MethodType(name, func, arg_type, reply_type)


class Service:
    """An object registered under its class name, exposing its public methods.

    A method qualifies when its name starts with an upper-case letter, it
    takes exactly one argument besides ``self`` and returns the reply.
    Errors are reported by raising.
    """

    def __init__(self, rcvr: Any) -> None:
        self.rcvr = rcvr
        self.name = type(rcvr).__name__
        if not is_exported(self.name):
            raise ValueError(f"rpc server: {self.name} is not a valid service name")
        self.methods: dict[str, MethodType] = {}
        for name, func in sorted(
            inspect.getmembers(type(rcvr), inspect.isfunction)
        ):
            if not is_exported(name):
                continue
            method_type = _method_type(name, func)
            if method_type is None:
                continue
            self.methods[name] = method_type
            logger.info("rpc server: register %s.%s", self.name, name)

    def call(self, method_type: MethodType, argv: Any) -> Any:
        """Invoke the method with ``argv`` and return its reply."""
        method_type._count_call()
        return method_type.func(self.rcvr, argv)