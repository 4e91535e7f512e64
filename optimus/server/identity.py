"""Credential resolution for incoming requests."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Mapping, Optional, Union


class IdentityResolver(ABC):
    """Turns a bearer token into the identity that owns quotas and submissions"""

    @abstractmethod
    def resolve(self, token: str) -> Optional[str]:
        """Return the identity for ``token``, or None if the token is not valid"""


class StaticKeyResolver(IdentityResolver):
    """
    Resolves tokens from a fixed table.

    Given a plain iterable of keys, each key is its own identity. Given a
    mapping, the mapping's values are the identities.
    """

    def __init__(self, api_keys: Union[Mapping[str, str], Iterable[str]]):
        if isinstance(api_keys, Mapping):
            self._keys: Dict[str, str] = dict(api_keys)
        else:
            self._keys = {key: key for key in api_keys}

    def resolve(self, token: str) -> Optional[str]:
        if not token:
            return None
        return self._keys.get(token)
