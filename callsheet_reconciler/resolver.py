"""Batched duplicate and do-not-call lookups against the shared stores."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Set

from .models import MasterContact
from .phone import mask_phone, normalize_phone
from .stores.base import AgentDirectory, ContactStore, DncRegistry

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ExistingContact:
    contact_id: str
    phone: str
    owner_agent_id: Optional[str] = None
    owner_name: Optional[str] = None


@dataclass(slots=True)
class LookupFailure:
    strategy: str
    error: str
    phones: List[str] = field(default_factory=list)


@dataclass
class PhoneSnapshot:
    """Store state for every phone of one file, gathered before row validation."""

    existing: Dict[str, ExistingContact] = field(default_factory=dict)
    dnc: Set[str] = field(default_factory=set)
    unresolved: Set[str] = field(default_factory=set)
    failures: List[LookupFailure] = field(default_factory=list)

    def owner_of(self, phone: str) -> Optional[ExistingContact]:
        return self.existing.get(phone)


@dataclass
class LocateResult:
    contact: Optional[ExistingContact] = None
    failures: List[LookupFailure] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.contact is not None


class LookupStrategy(Protocol):
    """One way of answering "which of these phones already exist?".

    The returned mapping contains every phone the strategy could answer for,
    with ``None`` meaning "confirmed absent". Phones missing from the mapping
    are handed to the next strategy.
    """

    name: str

    async def lookup(self, phones: Sequence[str], failures: List[LookupFailure]) -> Dict[str, Optional[MasterContact]]:  # pragma: no cover - protocol
        ...


class BatchPhoneLookup:
    """Privileged single round trip for the whole file."""

    name = "batch"

    def __init__(self, store: ContactStore) -> None:
        self._store = store

    async def lookup(self, phones: Sequence[str], failures: List[LookupFailure]) -> Dict[str, Optional[MasterContact]]:
        try:
            found = await self._store.find_by_phones(list(phones))
        except Exception as exc:
            LOGGER.warning("Batch phone lookup unavailable for %s phone(s): %s", len(phones), exc)
            failures.append(LookupFailure(self.name, str(exc), list(phones)))
            return {}
        by_phone: Dict[str, Optional[MasterContact]] = {phone: None for phone in phones}
        for contact in found:
            by_phone[contact.phone] = contact
        return by_phone


class PointPhoneLookup:
    """Unprivileged per-phone fallback; individual failures are recorded and skipped."""

    name = "point"

    def __init__(self, store: ContactStore) -> None:
        self._store = store

    async def lookup(self, phones: Sequence[str], failures: List[LookupFailure]) -> Dict[str, Optional[MasterContact]]:
        resolved: Dict[str, Optional[MasterContact]] = {}
        failed: List[str] = []
        last_error = ""
        for phone in phones:
            try:
                resolved[phone] = await self._store.find_by_phone(phone)
            except Exception as exc:
                LOGGER.warning("Point lookup failed for %s: %s", mask_phone(phone), exc)
                failed.append(phone)
                last_error = str(exc)
        if failed:
            failures.append(LookupFailure(self.name, last_error, failed))
        return resolved


class DuplicateResolver:
    """Answers existence and do-not-call questions without mutating any store."""

    def __init__(
        self,
        contacts: ContactStore,
        dnc: DncRegistry,
        *,
        agents: Optional[AgentDirectory] = None,
        strategies: Optional[Sequence[LookupStrategy]] = None,
    ) -> None:
        self._dnc = dnc
        self._agents = agents
        self._strategies: List[LookupStrategy] = list(strategies or (BatchPhoneLookup(contacts), PointPhoneLookup(contacts)))

    @property
    def strategies(self) -> List[LookupStrategy]:
        return list(self._strategies)

    async def snapshot(
        self,
        phones: Iterable[str],
        *,
        canonicalize: Callable[[str], str] = normalize_phone,
    ) -> PhoneSnapshot:
        """Look every phone up once, trying strategies in rank order.

        ``canonicalize`` must be the function the rows were normalized with so
        do-not-call entries compare equal to row phones.
        """

        pending = list(dict.fromkeys(phone for phone in phones if phone))
        snapshot = PhoneSnapshot()
        snapshot.dnc = await self._load_dnc(canonicalize)

        found: Dict[str, MasterContact] = {}
        for strategy in self._strategies:
            if not pending:
                break
            answers = await strategy.lookup(pending, snapshot.failures)
            for phone, contact in answers.items():
                if contact is not None:
                    found[phone] = contact
            pending = [phone for phone in pending if phone not in answers]

        snapshot.unresolved = set(pending)
        if pending:
            LOGGER.error(
                "Could not resolve %s phone(s) after %s strategies; they will be skipped",
                len(pending),
                len(self._strategies),
            )

        names = await self._owner_names({contact.current_owner_agent_id for contact in found.values()})
        for phone, contact in found.items():
            snapshot.existing[phone] = ExistingContact(
                contact_id=contact.id,
                phone=phone,
                owner_agent_id=contact.current_owner_agent_id,
                owner_name=names.get(contact.current_owner_agent_id),
            )
        return snapshot

    async def locate(self, phone: str) -> LocateResult:
        """Find the existing contact behind a uniqueness conflict."""

        result = LocateResult()
        for strategy in self._strategies:
            answers = await strategy.lookup([phone], result.failures)
            if phone not in answers:
                continue
            contact = answers[phone]
            if contact is not None:
                names = await self._owner_names({contact.current_owner_agent_id})
                result.contact = ExistingContact(
                    contact_id=contact.id,
                    phone=phone,
                    owner_agent_id=contact.current_owner_agent_id,
                    owner_name=names.get(contact.current_owner_agent_id),
                )
            return result
        return result

    async def _load_dnc(self, canonicalize: Callable[[str], str]) -> Set[str]:
        try:
            phones = await self._dnc.phones()
        except Exception:
            # No row can be cleared for calling without the registry.
            LOGGER.exception("Do-not-call registry unavailable")
            raise
        return {canonicalize(phone) for phone in phones}

    async def _owner_names(self, agent_ids: Iterable[Optional[str]]) -> Dict[Optional[str], Optional[str]]:
        names: Dict[Optional[str], Optional[str]] = {}
        if self._agents is None:
            return names
        for agent_id in agent_ids:
            if not agent_id:
                continue
            try:
                names[agent_id] = await self._agents.agent_name(agent_id)
            except Exception:
                LOGGER.warning("Could not resolve name for agent %s", agent_id, exc_info=True)
                names[agent_id] = None
        return names


__all__ = [
    "BatchPhoneLookup",
    "DuplicateResolver",
    "ExistingContact",
    "LocateResult",
    "LookupFailure",
    "LookupStrategy",
    "PhoneSnapshot",
    "PointPhoneLookup",
]
