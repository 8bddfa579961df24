"""
Database registry: tenant key → connection details + upline pointer.

The registry is parsed once from config.DATABASES into frozen entries. The
sync_to pointers must form a tree rooted at exactly one master; a registry
that violates this is rejected at construction so the sync walker can rely
on every upline chain terminating.
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, Optional, Tuple

from command_center.errors import ConfigurationError

logger = logging.getLogger('services.registry')


@dataclass(frozen=True)
class RegistryEntry:
    key: str
    display_name: str
    base_url: Optional[str] = None
    read_credential: Optional[str] = None
    write_credential: Optional[str] = None
    is_master: bool = False
    sync_to: Optional[str] = None

    def credential(self, elevated: bool = False) -> Optional[str]:
        return self.write_credential if elevated else self.read_credential


class DatabaseRegistry:
    """Immutable tenant registry with precomputed upline chains."""

    def __init__(self, entries):
        by_key = {}
        for entry in entries:
            if entry.key in by_key:
                raise ConfigurationError(f"Duplicate registry key '{entry.key}'")
            by_key[entry.key] = entry
        self._entries = MappingProxyType(by_key)
        self._chains = MappingProxyType(self._build_chains(by_key))
        self.master = next(key for key, entry in by_key.items() if entry.sync_to is None)

    @classmethod
    def from_config(cls, databases: Dict[str, Dict]) -> 'DatabaseRegistry':
        """Build a registry from the config.DATABASES mapping."""
        return cls(
            RegistryEntry(
                key=key,
                display_name=raw.get('name') or key,
                base_url=raw.get('url') or None,
                read_credential=raw.get('anon_key') or None,
                write_credential=raw.get('service_key') or None,
                is_master=bool(raw.get('is_master', False)),
                sync_to=raw.get('sync_to'),
            )
            for key, raw in databases.items()
        )

    @staticmethod
    def _build_chains(by_key):
        masters = [key for key, entry in by_key.items() if entry.sync_to is None]
        if len(masters) != 1:
            raise ConfigurationError(
                f"Registry must have exactly one master (sync_to=None), found {len(masters)}: {masters}"
            )

        chains = {}
        for key, entry in by_key.items():
            if entry.is_master != (entry.sync_to is None):
                raise ConfigurationError(
                    f"Registry entry '{key}': is_master={entry.is_master} but sync_to={entry.sync_to!r}"
                )
            chain = []
            seen = {key}
            current = entry
            while current.sync_to is not None:
                parent = current.sync_to
                if parent not in by_key:
                    raise ConfigurationError(f"Registry entry '{current.key}' syncs to unknown '{parent}'")
                if parent in seen:
                    raise ConfigurationError(f"Registry cycle detected through '{parent}'")
                seen.add(parent)
                chain.append(parent)
                current = by_key[parent]
            chains[key] = tuple(chain)
        return chains

    # ── Lookups ──────────────────────────────────────────────────────────

    def __contains__(self, key) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key) -> Optional[RegistryEntry]:
        return self._entries.get(key)

    def display_name(self, key) -> str:
        entry = self._entries.get(key)
        return entry.display_name if entry else key

    def parent(self, key) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.sync_to if entry else None

    def upline(self, key) -> Tuple[str, ...]:
        """Ancestors of `key`, nearest first, ending at the master."""
        return self._chains.get(key, ())


_registry = None


def get_registry() -> DatabaseRegistry:
    """Process-wide registry built from config.DATABASES on first use."""
    global _registry
    if _registry is None:
        from command_center.config import DATABASES
        _registry = DatabaseRegistry.from_config(DATABASES)
        logger.info("Database registry loaded: %d databases, master=%s", len(_registry), _registry.master)
    return _registry
