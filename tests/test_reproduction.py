"""Tests for the parallel reproduction engine."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from tribesim.core.config import AppConfig, EvolutionConfig, ReproductionConfig
from tribesim.core.errors import PairingError
from tribesim.core.genotype import TRAIT_BOUNDS, Genotype, SpecializationKind
from tribesim.core.intel import Intel
from tribesim.core.population import Population
from tribesim.social.reproduction import (
    ParentData,
    ParentPair,
    ReproductionEngine,
    is_eligible_parent,
    reproduce_asexual_parallel,
    reproduce_sexual_parallel,
    safe_investment,
    validate_pairs,
)

TICK = 500


def _make_config(**reproduction) -> AppConfig:
    return AppConfig(
        random_seed=42,
        reproduction=ReproductionConfig(**reproduction),
        evolution=EvolutionConfig(mutation_rate=0.5, population_aware=False),
    )


def _make_intel(agent_id: int, energy: float = 180.0, birth_tick: int = 0, **kwargs) -> Intel:
    genotype = kwargs.pop("genotype", None) or Genotype(
        lineage_id=f"L{agent_id}",
        specialization_bias=(0.1 * agent_id % 1.0, 0.2, 0.3),
        max_energy=300.0,
        maturity_gene=1.5,
    )
    return Intel(id=agent_id, genotype=genotype, energy=energy, birth_tick=birth_tick, **kwargs)


def _make_population(n: int = 6, **kwargs) -> Population:
    return Population([_make_intel(i, **kwargs) for i in range(n)])


class TestEligibility:
    def test_eligible(self):
        assert is_eligible_parent(_make_intel(0), TICK, _make_config())

    def test_low_energy(self):
        assert not is_eligible_parent(_make_intel(0, energy=100.0), TICK, _make_config())

    def test_immature(self):
        assert not is_eligible_parent(_make_intel(0, birth_tick=TICK - 10), TICK, _make_config())

    def test_marked_for_removal(self):
        agent = _make_intel(0, marked_for_removal=True)
        assert not is_eligible_parent(agent, TICK, _make_config())

    def test_dead(self):
        assert not is_eligible_parent(_make_intel(0, is_alive=False), TICK, _make_config())


class TestSafeInvestment:
    def test_capped_by_genotype_and_cap(self):
        parent = ParentData.from_intel(_make_intel(0, energy=200.0))
        # reproductive_investment 0.5 under cap 0.7
        assert safe_investment(parent, _make_config()) == pytest.approx(100.0)

    def test_parent_keeps_minimum(self):
        config = _make_config(min_parent_remaining=150.0)
        parent = ParentData.from_intel(_make_intel(0, energy=200.0))
        child = safe_investment(parent, config)
        assert child is not None
        assert 200.0 - child >= 150.0 - 1e-9

    def test_cannot_afford(self):
        config = _make_config(min_parent_remaining=195.0)
        parent = ParentData.from_intel(_make_intel(0, energy=200.0))
        assert safe_investment(parent, config) is None


class TestAsexual:
    def test_one_child_per_eligible_parent(self):
        pop = _make_population(4)
        pop.get(3).energy = 50.0  # ineligible
        children = reproduce_asexual_parallel(pop, _make_config(), tick=TICK)
        assert len(children) == 3
        assert sorted(c.parent_ids[0] for c in children) == [0, 1, 2]
        assert len(pop) == 7

    def test_parent_genotype_untouched(self):
        pop = _make_population(4)
        before = {a.id: a.genotype for a in pop}
        reproduce_asexual_parallel(pop, _make_config(), tick=TICK)
        for agent_id, genotype in before.items():
            assert pop.get(agent_id).genotype is genotype

    def test_energy_debit_and_offspring_count(self):
        pop = _make_population(1, energy=200.0)
        children = reproduce_asexual_parallel(pop, _make_config(), tick=TICK)
        parent = pop.get(0)
        assert parent.energy == pytest.approx(200.0 - children[0].energy)
        assert parent.offspring_count == 1

    def test_child_record(self):
        pop = _make_population(1)
        pop.assign_tribe(0, 3)
        child = reproduce_asexual_parallel(pop, _make_config(), tick=TICK)[0]
        assert child.birth_tick == TICK
        assert child.generation == 1
        assert child.tribe_id == 3
        assert child.id != 0
        assert not child.specialization.committed

    def test_exclude_ids(self):
        pop = _make_population(3)
        children = reproduce_asexual_parallel(pop, _make_config(), tick=TICK, exclude_ids={0, 1})
        assert [c.parent_ids for c in children] == [(2,)]

    def test_deterministic_for_seed(self):
        a = reproduce_asexual_parallel(_make_population(8), _make_config(), tick=TICK, seed=7)
        b = reproduce_asexual_parallel(_make_population(8), _make_config(), tick=TICK, seed=7)
        assert [c.genotype for c in a] == [c.genotype for c in b]
        assert [c.id for c in a] == [c.id for c in b]

    def test_seed_changes_outcome(self):
        a = reproduce_asexual_parallel(_make_population(8), _make_config(), tick=TICK, seed=1)
        b = reproduce_asexual_parallel(_make_population(8), _make_config(), tick=TICK, seed=2)
        assert [c.genotype for c in a] != [c.genotype for c in b]

    def test_worker_count_does_not_change_result(self):
        config = _make_config()
        with ThreadPoolExecutor(max_workers=1) as one, ThreadPoolExecutor(max_workers=8) as many:
            a = ReproductionEngine(config, one).reproduce_asexual(_make_population(10), TICK)
            b = ReproductionEngine(config, many).reproduce_asexual(_make_population(10), TICK)
        assert [c.genotype for c in a] == [c.genotype for c in b]

    def test_committed_role_passed_to_child_bias(self):
        config = AppConfig(evolution=EvolutionConfig(mutation_rate=0.0, population_aware=False))
        parent = _make_intel(0, genotype=Genotype(lineage_id="L", specialization_bias=(0.5, 0.5, 0.5)))
        parent.specialization.commit(SpecializationKind.PROVIDER)
        pop = Population([parent])
        child = reproduce_asexual_parallel(pop, config, tick=TICK)[0]
        assert child.genotype.bias_for(SpecializationKind.PROVIDER) == pytest.approx(0.55)

    def test_empty_population(self):
        assert reproduce_asexual_parallel(Population(), _make_config()) == []


class TestSexual:
    def test_child_traits_from_parents(self):
        pop = _make_population(2)
        config = AppConfig(random_seed=3, evolution=EvolutionConfig(mutation_rate=0.0, population_aware=False))
        children = reproduce_sexual_parallel(pop, [ParentPair(0, 1)], config, tick=TICK)
        assert len(children) == 1
        child = children[0]
        p1, p2 = pop.get(0).genotype, pop.get(1).genotype
        for name in TRAIT_BOUNDS:
            assert getattr(child.genotype, name) in (getattr(p1, name), getattr(p2, name))
        assert child.parent_ids == (0, 1)

    def test_both_parents_debited(self):
        pop = _make_population(2, energy=200.0)
        child = reproduce_sexual_parallel(pop, [ParentPair(0, 1)], _make_config(), tick=TICK)[0]
        spent = (200.0 - pop.get(0).energy) + (200.0 - pop.get(1).energy)
        assert spent == pytest.approx(child.energy)
        assert pop.get(0).offspring_count == 1
        assert pop.get(1).offspring_count == 1

    def test_generation_is_max_plus_one(self):
        pop = Population([_make_intel(0, generation=2), _make_intel(1, generation=5)])
        child = reproduce_sexual_parallel(pop, [ParentPair(0, 1)], _make_config(), tick=TICK)[0]
        assert child.generation == 6

    def test_tribe_from_first_parent(self):
        pop = Population([_make_intel(0, tribe_id=4), _make_intel(1, tribe_id=9)])
        child = reproduce_sexual_parallel(pop, [ParentPair(0, 1)], _make_config(), tick=TICK)[0]
        assert child.tribe_id == 4

    def test_ineligible_pair_skipped(self):
        pop = _make_population(4)
        pop.get(3).energy = 10.0
        children = reproduce_sexual_parallel(
            pop, [ParentPair(0, 1), ParentPair(2, 3)], _make_config(), tick=TICK,
        )
        assert [c.parent_ids for c in children] == [(0, 1)]

    def test_unknown_agent_raises(self):
        pop = _make_population(2)
        with pytest.raises(PairingError, match="unknown"):
            reproduce_sexual_parallel(pop, [ParentPair(0, 99)], _make_config(), tick=TICK)

    def test_self_pair_raises(self):
        pop = _make_population(2)
        with pytest.raises(PairingError, match="itself"):
            reproduce_sexual_parallel(pop, [ParentPair(1, 1)], _make_config(), tick=TICK)

    def test_duplicate_agent_raises(self):
        pop = _make_population(3)
        with pytest.raises(PairingError, match="more than one pair") as exc_info:
            validate_pairs(pop, [ParentPair(0, 1), ParentPair(1, 2)])
        assert exc_info.value.pair == (1, 2)

    def test_dead_agent_raises(self):
        pop = _make_population(2)
        pop.get(1).is_alive = False
        with pytest.raises(PairingError, match="ineligible"):
            reproduce_sexual_parallel(pop, [ParentPair(0, 1)], _make_config(), tick=TICK)

    def test_error_leaves_population_untouched(self):
        pop = _make_population(3)
        energies = [a.energy for a in pop]
        with pytest.raises(PairingError):
            reproduce_sexual_parallel(
                pop, [ParentPair(0, 1), ParentPair(2, 42)], _make_config(), tick=TICK,
            )
        assert len(pop) == 3
        assert [a.energy for a in pop] == energies
