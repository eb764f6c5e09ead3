from __future__ import annotations

import threading
from typing import Mapping

from books_api_pipeline.core import PipelineError, UnresolvedVariableError

from .types import VariableRef

EnvValue = str | VariableRef


class VariableStore:
    """
    Output variables of completed actions, keyed by namespace.

    A namespace is written once, when its producing action succeeds. Readers
    either see the whole namespace or nothing.
    """

    def __init__(self) -> None:
        self._values: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def publish(self, namespace: str, values: Mapping[str, object]) -> dict[str, str]:
        frozen = {str(k): str(v) for k, v in values.items()}
        with self._lock:
            if namespace in self._values:
                raise PipelineError(f"Namespace already published: {namespace}")
            self._values[namespace] = frozen
        return dict(frozen)

    def is_published(self, namespace: str) -> bool:
        with self._lock:
            return namespace in self._values

    def get(self, namespace: str, key: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._values.get(namespace, {}).get(key, default)

    def resolve(self, ref: VariableRef) -> str:
        with self._lock:
            ns = self._values.get(ref.namespace)
            if ns is None or ref.key not in ns:
                raise UnresolvedVariableError(f"Unresolved variable {ref}")
            return ns[ref.key]

    def resolve_env(self, env: Mapping[str, EnvValue]) -> dict[str, str]:
        out: dict[str, str] = {}
        for name, value in env.items():
            out[name] = self.resolve(value) if isinstance(value, VariableRef) else value
        return out

    def snapshot(self) -> dict[str, dict[str, str]]:
        with self._lock:
            return {ns: dict(v) for ns, v in self._values.items()}
