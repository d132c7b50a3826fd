"""
Credential store abstraction.

Instance records (with encrypted secrets) are owned by an external
persistence layer; the pipeline only reads them by reference. An in-memory
store is provided for tooling and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from .models import StoredCredentials


class CredentialStore(ABC):
    @abstractmethod
    def get(self, credentials_ref: str) -> Optional[StoredCredentials]:
        raise NotImplementedError


class InMemoryCredentialStore(CredentialStore):
    def __init__(self, records: Iterable[StoredCredentials] = ()):
        self._records: Dict[str, StoredCredentials] = {r.id: r for r in records}

    def add(self, record: StoredCredentials) -> None:
        self._records[record.id] = record

    def get(self, credentials_ref: str) -> Optional[StoredCredentials]:
        return self._records.get(credentials_ref)
