"""Tests for the legend archive and its SQLite sink."""

import sqlite3

import pytest

from tribesim.core.config import AppConfig, LegendCriteria
from tribesim.core.errors import ArchiveWriteError
from tribesim.core.genotype import Genotype, SpecializationKind
from tribesim.core.intel import Intel
from tribesim.social.legend import (
    Legend,
    LegendArchive,
    archive_if_legend,
    is_legend_worthy,
)
from tribesim.social.legend_store import SqliteLegendSink


def _make_config(**criteria) -> AppConfig:
    return AppConfig(legend=LegendCriteria(**criteria))


def _make_intel(agent_id: int = 0, **kwargs) -> Intel:
    defaults = dict(
        id=agent_id,
        genotype=Genotype(lineage_id=f"lin{agent_id}", specialization_bias=(0.1, 0.2, 0.3)),
        birth_tick=0,
        energy=100.0,
    )
    defaults.update(kwargs)
    return Intel(**defaults)


def _worthy(agent_id: int = 0, **kwargs) -> Intel:
    return _make_intel(agent_id, offspring_count=11, **kwargs)


class _FailingSink:
    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls = 0

    def append(self, legend: Legend) -> None:
        self.calls += 1
        raise self.exc


class _ListSink:
    def __init__(self):
        self.items: list[Legend] = []

    def append(self, legend: Legend) -> None:
        self.items.append(legend)


class TestLegendWorthiness:
    def test_ordinary_agent(self):
        assert not is_legend_worthy(_make_intel(), _make_config(), tick=500)

    def test_long_lifespan(self):
        assert is_legend_worthy(_make_intel(), _make_config(), tick=1001)
        assert not is_legend_worthy(_make_intel(), _make_config(), tick=1000)

    def test_many_offspring(self):
        assert is_legend_worthy(_make_intel(offspring_count=11), _make_config(), tick=0)
        assert not is_legend_worthy(_make_intel(offspring_count=10), _make_config(), tick=0)

    def test_peak_energy(self):
        agent = _make_intel(peak_energy=301.0)
        assert is_legend_worthy(agent, _make_config(), tick=0)

    def test_optional_rank_criterion(self):
        agent = _make_intel(social_rank=0.95)
        assert not is_legend_worthy(agent, _make_config(), tick=0)
        assert is_legend_worthy(agent, _make_config(min_rank=0.9), tick=0)


class TestArchiveIfLegend:
    def test_archives_worthy_agent(self):
        archive = LegendArchive()
        agent = _worthy(tribe_id=2)
        agent.specialization.commit(SpecializationKind.ENGINEER)

        legend = archive_if_legend(agent, archive, _make_config(), tick=40)

        assert legend is not None
        assert agent.archived
        assert 0 in archive
        assert legend.lineage_id == "lin0"
        assert legend.specialization == "engineer"
        assert legend.tribe_id == 2
        assert legend.lifespan == 40

    def test_twice_gives_one_entry(self):
        archive = LegendArchive()
        agent = _worthy()
        config = _make_config()
        first = archive_if_legend(agent, archive, config, tick=10)
        second = archive_if_legend(agent, archive, config, tick=11)
        assert first is not None
        assert second is None
        assert len(archive) == 1

    def test_unworthy_not_archived(self):
        archive = LegendArchive()
        agent = _make_intel()
        assert archive_if_legend(agent, archive, _make_config(), tick=5) is None
        assert not agent.archived
        assert len(archive) == 0

    def test_simulation_state_untouched(self):
        archive = LegendArchive()
        agent = _worthy(energy=80.0, social_rank=0.7)
        before = agent.to_dict()
        archive_if_legend(agent, archive, _make_config(), tick=10)
        after = agent.to_dict()
        assert after.pop("archived") is True
        before.pop("archived")
        assert after == before

    def test_snapshot_is_immutable(self):
        archive = LegendArchive()
        agent = _worthy()
        legend = archive_if_legend(agent, archive, _make_config(), tick=10)
        agent.offspring_count = 99
        with pytest.raises(AttributeError):
            legend.offspring_count = 0
        assert archive.get(0).offspring_count == 11

    def test_sink_failure_leaves_agent_unarchived(self):
        sink = _FailingSink(OSError("disk full"))
        archive = LegendArchive(sink=sink)
        agent = _worthy(7)
        with pytest.raises(ArchiveWriteError, match="disk full") as exc_info:
            archive_if_legend(agent, archive, _make_config(), tick=10)
        assert exc_info.value.agent_id == 7
        assert isinstance(exc_info.value.__cause__, OSError)
        assert not agent.archived
        assert 7 not in archive

    def test_arbitrary_sink_exception_wrapped(self):
        archive = LegendArchive(sink=_FailingSink(RuntimeError("disk gone")))
        agent = _worthy(3)
        with pytest.raises(ArchiveWriteError, match="disk gone") as exc_info:
            archive_if_legend(agent, archive, _make_config(), tick=10)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not agent.archived
        assert len(archive) == 0

    def test_retry_after_failure(self):
        archive = LegendArchive(sink=_FailingSink(sqlite3.OperationalError("locked")))
        agent = _worthy()
        with pytest.raises(ArchiveWriteError):
            archive_if_legend(agent, archive, _make_config(), tick=10)
        archive.sink = _ListSink()
        assert archive_if_legend(agent, archive, _make_config(), tick=11) is not None
        assert agent.archived
        assert len(archive.sink.items) == 1


class TestLegendArchive:
    def _filled(self) -> LegendArchive:
        archive = LegendArchive()
        config = _make_config()
        archive_if_legend(_worthy(0, peak_energy=320.0), archive, config, tick=100)
        archive_if_legend(_make_intel(1, offspring_count=25), archive, config, tick=200)
        archive_if_legend(_make_intel(2), archive, config, tick=1500)
        return archive

    def test_append_only(self):
        archive = self._filled()
        with pytest.raises(ValueError, match="already archived"):
            archive.append(archive.get(0))

    def test_legends_in_archive_order(self):
        assert [lg.agent_id for lg in self._filled().legends()] == [0, 1, 2]

    def test_top(self):
        archive = self._filled()
        assert archive.top(1, "offspring_count")[0].agent_id == 1
        assert archive.top(1, "lifespan")[0].agent_id == 2
        assert archive.top(1)[0].agent_id == 0

    def test_top_unknown_key(self):
        with pytest.raises(ValueError, match="sort key"):
            self._filled().top(3, "name")

    def test_hall_of_fame(self):
        hof = self._filled().hall_of_fame()
        assert hof["count"] == 3
        assert hof["longest_lived"]["agent_id"] == 2
        assert hof["most_offspring"]["agent_id"] == 1
        assert hof["highest_energy"]["agent_id"] == 0
        assert hof["by_specialization"] == {"none": 3}
        assert hof["lineages"] == 3

    def test_hall_of_fame_empty(self):
        assert LegendArchive().hall_of_fame()["count"] == 0

    def test_hash_stable_and_content_sensitive(self):
        a, b = self._filled(), self._filled()
        assert a.legends_hash() == b.legends_hash()
        assert len(a.legends_hash()) == 64
        archive_if_legend(_worthy(9), b, _make_config(), tick=5)
        assert a.legends_hash() != b.legends_hash()

    def test_legend_dict_round_trip(self):
        legend = self._filled().get(1)
        assert Legend.from_dict(legend.to_dict()) == legend


class TestSqliteLegendSink:
    def test_persists_and_restores(self, tmp_path):
        db = str(tmp_path / "legends.db")
        sink = SqliteLegendSink(db)
        archive = LegendArchive(sink=sink)
        config = _make_config()
        for i in range(3):
            archive_if_legend(_worthy(i), archive, config, tick=10 * i)
        sink.close()

        reopened = SqliteLegendSink(db)
        restored = LegendArchive.restore(reopened.load_all(), sink=reopened)
        assert [lg.agent_id for lg in restored.legends()] == [0, 1, 2]
        assert restored.legends_hash() == archive.legends_hash()
        assert reopened.list_summaries()[1]["lineage_id"] == "lin1"
        reopened.close()

    def test_duplicate_insert_raises_archive_error(self, tmp_path):
        sink = SqliteLegendSink(str(tmp_path / "legends.db"))
        legend = Legend.from_intel(_worthy(4), tick=10)
        sink.append(legend)
        with pytest.raises(ArchiveWriteError) as exc_info:
            sink.append(legend)
        assert exc_info.value.agent_id == 4
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
        sink.close()

    def test_closed_store_raises_archive_error(self, tmp_path):
        sink = SqliteLegendSink(str(tmp_path / "legends.db"))
        sink.close()
        archive = LegendArchive(sink=sink)
        agent = _worthy()
        with pytest.raises(ArchiveWriteError):
            archive_if_legend(agent, archive, _make_config(), tick=1)
        assert not agent.archived
