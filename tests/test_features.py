import subprocess

import pytest

from pymetapsicov.alignment import AlignmentBuilder
from pymetapsicov.config import PipelineConfig
from pymetapsicov.features import (
    FeatureStageRunner,
    contacts_from_text,
    read_contacts,
    select_top_contacts,
)
from pymetapsicov.sequences import sequence_fasta

from conftest import FakeToolRunner, QUERY_RESIDUES


STAGE2 = "3 40 0 8 0.2\n5 25 0 8 0.9\n10 20 0 8 0.5\n12 30 0 8 0.9\n"


class TestContactTables:
    """Test parsing and ranking of fusion output."""

    def test_read_contacts(self):
        df = read_contacts(STAGE2)
        assert list(df["i"]) == [3, 5, 10, 12]
        assert list(df["prob"]) == [0.2, 0.9, 0.5, 0.9]

    def test_read_empty(self):
        assert read_contacts("\n").empty
        assert contacts_from_text("") == []

    def test_top_contacts_ranked_by_probability(self):
        assert select_top_contacts(STAGE2, 3) == "5 25 0 8 0.9\n12 30 0 8 0.9\n10 20 0 8 0.5\n"

    def test_top_contacts_limit_larger_than_input(self):
        assert len(select_top_contacts(STAGE2, 5000).splitlines()) == 4

    def test_contacts_from_text(self):
        assert contacts_from_text("5 25 0 8 0.9\n") == [(5, 25, 0.9)]


@pytest.fixture
def make_stage_runner(store, databases):
    def _make(config=None, **kwargs):
        config = config or PipelineConfig(data_dir="/data/metapsicov", psipred_data_dir="/data/psipred")
        runner = FakeToolRunner(store=store, **kwargs)
        store.write("query.fasta", sequence_fasta("query", QUERY_RESIDUES))
        builder = AlignmentBuilder(runner, databases, config, threads=2)
        return runner, FeatureStageRunner(runner, builder, config, threads=2)
    return _make


class TestFeatureStageRunner:
    """Test the per-target prediction stages."""

    def test_full_run_order(self, make_stage_runner, store):
        runner, stages = make_stage_runner(contacts={"query": STAGE2})

        prediction = stages.run("query", "query")

        assert runner.commands() == [
            "blastpgp", "makemat", "hhblits", "psipred", "psipass2", "solvpred",
            "alnstats", "psicov", "freecontact", "ccmpred", "metapsicov", "metapsicovp2",
        ]
        assert prediction.contacts[0] == (5, 25, 0.9)
        assert len(prediction.contacts) == 4
        assert prediction.features.stage2 == "query.metapsicov.stage2"
        assert store.read("query.metapsicov.stage2").startswith("5 25 0 8 0.9\n")

    def test_stage1_receives_ten_band_weights(self, make_stage_runner):
        runner, stages = make_stage_runner(contacts={"query": STAGE2})

        stages.run("query", "query")

        stage1 = runner.executed[runner.commands().index("metapsicov")]
        assert stage1[1:8] == [
            "query.colstats", "query.pairstats", "query.psicov", "query.evfold",
            "query.ccmpred", "query.ss2", "query.solv",
        ]
        assert len(stage1[8:]) == 10
        assert stage1[8] == "/data/metapsicov/weights_6A.dat"
        assert stage1[-1] == "/data/metapsicov/weights_1012A.dat"

    def test_freecontact_reads_alignment_on_stdin(self, make_stage_runner, store):
        runner, stages = make_stage_runner(contacts={"query": STAGE2})

        stages.run("query", "query")

        assert store.read("query.evfold") == "1 A 10 A 0.1 0.2\n"

    def test_shallow_alignment_skips_scorers(self, make_stage_runner, store):
        runner, stages = make_stage_runner(depths={"query.a3m": 5, "query.jack.a3m": 3})

        stages.run("query", "query")

        for command in ("psicov", "freecontact", "ccmpred"):
            assert command not in runner.commands()
        for name in ("query.psicov", "query.evfold", "query.ccmpred"):
            assert store.read(name) == ""
        assert "metapsicov" in runner.commands()

    def test_psicov_timeout_is_tolerated(self, make_stage_runner, store):
        runner, stages = make_stage_runner(contacts={"query": STAGE2}, timeouts=["psicov", "ccmpred"])

        prediction = stages.run("query", "query")

        assert store.read("query.psicov") == ""
        assert store.read("query.ccmpred") == ""
        assert "metapsicovp2" in runner.commands()
        assert len(prediction.contacts) == 4

    def test_stage2_keeps_top_contacts(self, make_stage_runner, store):
        config = PipelineConfig(data_dir="/d", psipred_data_dir="/p", top_contacts=2)
        runner, stages = make_stage_runner(config=config, contacts={"query": STAGE2})

        prediction = stages.run("query", "query")

        assert prediction.contacts == [(5, 25, 0.9), (12, 30, 0.9)]
        assert store.read("query.metapsicov.stage2") == "5 25 0 8 0.9\n12 30 0 8 0.9\n"

    def test_rerun_reuses_all_stages(self, make_stage_runner, store, databases, config):
        runner, stages = make_stage_runner(contacts={"query": STAGE2})
        first = stages.run("query", "query")

        rerun = FakeToolRunner(store=store, contacts={"query": STAGE2})
        builder = AlignmentBuilder(rerun, databases, config)
        second = FeatureStageRunner(rerun, builder, config).run("query", "query")

        assert rerun.executed == []
        assert second.contacts == first.contacts

    def test_rerun_with_empty_stage2_reuses_all_stages(self, make_stage_runner, store, databases, config):
        runner, stages = make_stage_runner(contacts={})
        stages.run("query", "query")
        assert store.read("query.metapsicov.stage2") == ""

        rerun = FakeToolRunner(store=store, contacts={})
        builder = AlignmentBuilder(rerun, databases, config)
        prediction = FeatureStageRunner(rerun, builder, config).run("query", "query")

        assert rerun.executed == []
        assert prediction.contacts == []

    def test_changed_contact_limit_reruns_stage2(self, make_stage_runner, store, databases):
        runner, stages = make_stage_runner(contacts={"query": STAGE2})
        stages.run("query", "query")

        config = PipelineConfig(data_dir="/data/metapsicov", psipred_data_dir="/data/psipred", top_contacts=1)
        rerun = FakeToolRunner(store=store, contacts={"query": STAGE2})
        builder = AlignmentBuilder(rerun, databases, config)
        prediction = FeatureStageRunner(rerun, builder, config).run("query", "query")

        assert rerun.commands() == ["metapsicovp2"]
        assert prediction.contacts == [(5, 25, 0.9)]

    def test_ccmpred_partial_output_discarded_on_timeout(self, make_stage_runner, store):
        runner, stages = make_stage_runner(contacts={"query": STAGE2})

        def stopped_ccmpred(argv, stdin_text):
            store.write(argv[-1], "0.0 0.1\n")
            raise subprocess.TimeoutExpired(argv, 86400)

        runner._ccmpred = stopped_ccmpred

        stages.run("query", "query")

        assert store.read("query.ccmpred") == ""
        assert not runner.cache.has("query.ccmpred")
