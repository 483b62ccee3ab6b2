# placement_engine/workload/secrets.py
"""Secret store collaborators and resolution for the primary process."""

import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

from placement_engine.core.errors import SecretResolutionFailure
from placement_engine.workload.models import WorkloadUnitSpec

logger = logging.getLogger(__name__)


class SecretStore(ABC):
    """Resolves named secret references to values."""

    @abstractmethod
    def get_secret(self, key: str) -> Optional[str]:
        """Return the value, or None when the secret does not exist."""
        pass


class EnvSecretStore(SecretStore):
    """Secrets injected into the controller's environment (optionally prefixed)."""

    def __init__(self, prefix: str = "", environ: Optional[Mapping[str, str]] = None):
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get_secret(self, key: str) -> Optional[str]:
        value = self._environ.get(f"{self._prefix}{key}")
        return value or None


class InMemorySecretStore(SecretStore):
    def __init__(self, values: Optional[Dict[str, str]] = None):
        self._values = dict(values or {})

    def put(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def get_secret(self, key: str) -> Optional[str]:
        return self._values.get(key)


class SecretResolver:
    """
    Resolves a Workload Unit's secret references at start time.

    Values are returned to the caller only; they are never logged or stored.
    """

    def __init__(self, store: SecretStore):
        self._store = store

    def resolve(self, spec: WorkloadUnitSpec) -> Dict[str, str]:
        """
        Resolve every secret reference of the primary process.

        Returns:
            Environment variable name -> secret value

        Raises:
            SecretResolutionFailure: If any reference is missing
        """
        resolved: Dict[str, str] = {}
        missing = []

        for env_name, secret_key in spec.primary.secret_refs.items():
            value = self._store.get_secret(secret_key)
            if value is None:
                missing.append(secret_key)
            else:
                resolved[env_name] = value

        if missing:
            logger.error(f"[secrets] ❌ missing required secrets: {', '.join(sorted(missing))}")
            raise SecretResolutionFailure(missing)

        logger.info(f"[secrets] resolved {len(resolved)} secret(s): {', '.join(sorted(resolved))}")
        return resolved
