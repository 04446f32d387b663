"""Tests for Intel records and the Population container."""

import pytest

from tribesim.core.errors import SpecializationLockedError
from tribesim.core.genotype import Genotype, SpecializationKind
from tribesim.core.intel import Intel, Specialization
from tribesim.core.population import Population


def _make_intel(agent_id: int, tribe_id: int | None = None, **kwargs) -> Intel:
    return Intel(id=agent_id, genotype=Genotype(lineage_id="L"), tribe_id=tribe_id, **kwargs)


class TestSpecializationSlot:
    def test_starts_uncommitted(self):
        slot = Specialization()
        assert not slot.committed
        assert slot.kind is None

    def test_commit_once(self):
        slot = Specialization()
        slot.commit(SpecializationKind.ENGINEER)
        assert slot.committed
        assert slot.kind is SpecializationKind.ENGINEER

    def test_second_commit_raises(self):
        slot = Specialization()
        slot.commit(SpecializationKind.SOLDIER)
        with pytest.raises(SpecializationLockedError):
            slot.commit(SpecializationKind.PROVIDER)
        assert slot.kind is SpecializationKind.SOLDIER

    def test_equality(self):
        assert Specialization(SpecializationKind.SOLDIER) == Specialization(SpecializationKind.SOLDIER)
        assert Specialization() != Specialization(SpecializationKind.SOLDIER)


class TestIntel:
    def test_peak_tracks_initial_energy(self):
        agent = _make_intel(1, energy=150.0)
        assert agent.peak_energy == 150.0

    def test_set_energy_clamps(self):
        agent = _make_intel(1)
        agent.set_energy(-50.0)
        assert agent.energy == 0.0
        agent.set_energy(10_000.0)
        assert agent.energy == agent.max_energy
        assert agent.peak_energy == agent.max_energy

    def test_age(self):
        agent = _make_intel(1, birth_tick=10)
        assert agent.age(25) == 15
        assert agent.age(5) == 0

    def test_lineage_from_genotype(self):
        assert _make_intel(1).lineage_id == "L"

    def test_to_dict(self):
        agent = _make_intel(3, tribe_id=2)
        agent.specialization.commit(SpecializationKind.PROVIDER)
        d = agent.to_dict()
        assert d["id"] == 3
        assert d["tribe_id"] == 2
        assert d["specialization"] == "provider"
        assert d["genotype"]["lineage_id"] == "L"


class TestPopulationArena:
    def test_add_and_get(self):
        pop = Population([_make_intel(0), _make_intel(1)])
        assert len(pop) == 2
        assert pop.get(1).id == 1
        assert 0 in pop

    def test_duplicate_rejected(self):
        pop = Population([_make_intel(0)])
        with pytest.raises(ValueError, match="already"):
            pop.add(_make_intel(0))

    def test_get_unknown_raises(self):
        with pytest.raises(KeyError):
            Population().get(99)

    def test_find_unknown_is_none(self):
        assert Population().find(99) is None

    def test_allocate_id_skips_existing(self):
        pop = Population([_make_intel(5)])
        assert pop.allocate_id() == 6

    def test_remove_leaves_tribe(self):
        pop = Population([_make_intel(0, tribe_id=1), _make_intel(1, tribe_id=1)])
        pop.remove(0)
        assert pop.tribe(1).member_ids == frozenset({1})

    def test_iteration_snapshot(self):
        pop = Population([_make_intel(i) for i in range(3)])
        for agent in pop:
            if agent.id == 0:
                pop.remove(2)
        assert pop.ids() == [0, 1]

    def test_partition_covers_everyone(self):
        pop = Population([_make_intel(i) for i in range(10)])
        chunks = pop.partition(3)
        assert [len(c) for c in chunks] == [4, 3, 3]
        assert sorted(a.id for c in chunks for a in c) == list(range(10))

    def test_apply_energy_delta(self):
        pop = Population([_make_intel(0, energy=50.0)])
        assert pop.apply_energy_delta(0, -80.0) == 0.0


class TestTribeIndex:
    def test_assign_moves_atomically(self):
        pop = Population([_make_intel(0, tribe_id=1), _make_intel(1, tribe_id=1)])
        pop.assign_tribe(0, 2)
        assert pop.get(0).tribe_id == 2
        assert pop.tribe(1).member_ids == frozenset({1})
        assert pop.tribe(2).member_ids == frozenset({0})

    def test_empty_tribe_dissolves(self):
        pop = Population([_make_intel(0, tribe_id=1)])
        pop.assign_tribe(0, None)
        assert pop.tribe_count == 0
        with pytest.raises(KeyError):
            pop.tribe(1)

    def test_new_tribe_ids_are_fresh(self):
        pop = Population([_make_intel(0, tribe_id=4)])
        assert pop.new_tribe_id() == 5

    def test_tribes_sorted_by_id(self):
        pop = Population([_make_intel(0, tribe_id=3), _make_intel(1, tribe_id=1)])
        assert [t.id for t in pop.tribes()] == [1, 3]

    def test_tribe_members_sorted(self):
        pop = Population([_make_intel(i, tribe_id=0) for i in (4, 2, 7)])
        assert [m.id for m in pop.tribe_members(0)] == [2, 4, 7]
