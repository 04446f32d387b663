"""
Population container: arena of live Intel records plus a tribe index.

Records are keyed by agent id in insertion order. Tribe membership is kept
as ``tribe_id -> set of agent ids`` alongside each record's ``tribe_id`` so
splits and merges only touch the affected members. Every mutating method
here is meant to be called from a single-threaded commit phase.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from tribesim.core.intel import Intel

TribeId = int


@dataclass(frozen=True)
class Tribe:
    """Snapshot of one tribe's membership."""

    id: TribeId
    member_ids: frozenset[int] = field(default_factory=frozenset)

    @property
    def size(self) -> int:
        return len(self.member_ids)

    def to_dict(self) -> dict[str, object]:
        return {"id": self.id, "member_ids": sorted(self.member_ids), "size": self.size}


class Population:
    """Owns every live Intel record and the tribe membership index."""

    def __init__(self, agents: Iterable[Intel] = ()) -> None:
        self._agents: dict[int, Intel] = {}
        self._tribes: dict[TribeId, set[int]] = {}
        self._next_agent_id = 0
        self._next_tribe_id = 0
        for agent in agents:
            self.add(agent)

    # ------------------------------------------------------------------
    # Arena access
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._agents)

    def __iter__(self) -> Iterator[Intel]:
        return iter(list(self._agents.values()))

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def get(self, agent_id: int) -> Intel:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise KeyError(f"Agent {agent_id} is not in the population") from None

    def find(self, agent_id: int) -> Intel | None:
        return self._agents.get(agent_id)

    def ids(self) -> list[int]:
        return list(self._agents)

    # ------------------------------------------------------------------
    # Committed mutation
    # ------------------------------------------------------------------
    def allocate_id(self) -> int:
        agent_id = self._next_agent_id
        self._next_agent_id += 1
        return agent_id

    def add(self, agent: Intel) -> Intel:
        """Insert a record; its ``tribe_id`` (if any) is indexed too."""
        if agent.id in self._agents:
            raise ValueError(f"Agent {agent.id} is already in the population")
        self._agents[agent.id] = agent
        self._next_agent_id = max(self._next_agent_id, agent.id + 1)
        if agent.tribe_id is not None:
            self._tribes.setdefault(agent.tribe_id, set()).add(agent.id)
            self._next_tribe_id = max(self._next_tribe_id, agent.tribe_id + 1)
        return agent

    def remove(self, agent_id: int) -> Intel:
        agent = self.get(agent_id)
        self._leave_tribe(agent)
        del self._agents[agent_id]
        return agent

    def apply_energy_delta(self, agent_id: int, delta: float) -> float:
        """Add ``delta`` to an agent's energy (clamped); return the new value."""
        agent = self.get(agent_id)
        agent.set_energy(agent.energy + delta)
        return agent.energy

    # ------------------------------------------------------------------
    # Tribes
    # ------------------------------------------------------------------
    def new_tribe_id(self) -> TribeId:
        tribe_id = self._next_tribe_id
        self._next_tribe_id += 1
        return tribe_id

    def assign_tribe(self, agent_id: int, tribe_id: TribeId | None) -> None:
        """Move one agent to ``tribe_id`` in a single step (None = tribeless)."""
        agent = self.get(agent_id)
        if agent.tribe_id == tribe_id:
            return
        self._leave_tribe(agent)
        agent.tribe_id = tribe_id
        if tribe_id is not None:
            self._tribes.setdefault(tribe_id, set()).add(agent_id)
            self._next_tribe_id = max(self._next_tribe_id, tribe_id + 1)

    def _leave_tribe(self, agent: Intel) -> None:
        if agent.tribe_id is None:
            return
        members = self._tribes.get(agent.tribe_id)
        if members is not None:
            members.discard(agent.id)
            if not members:
                # Empty tribes dissolve
                del self._tribes[agent.tribe_id]

    def tribe(self, tribe_id: TribeId) -> Tribe:
        try:
            members = self._tribes[tribe_id]
        except KeyError:
            raise KeyError(f"Tribe {tribe_id} does not exist") from None
        return Tribe(id=tribe_id, member_ids=frozenset(members))

    def tribes(self) -> list[Tribe]:
        return [
            Tribe(id=tid, member_ids=frozenset(members))
            for tid, members in sorted(self._tribes.items())
        ]

    def tribe_members(self, tribe_id: TribeId) -> list[Intel]:
        return [self._agents[mid] for mid in sorted(self._tribes.get(tribe_id, ()))]

    @property
    def tribe_count(self) -> int:
        return len(self._tribes)
