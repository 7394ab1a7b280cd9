import os
import pytest
import subprocess
import tempfile
import shutil
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pymetapsicov.cache import MemoryStore, StageCache
from pymetapsicov.config import Databases, PipelineConfig
from pymetapsicov.sequences import parse_fasta
from pymetapsicov.tools import ToolRunner


QUERY_RESIDUES = (
    "MKTAYIAKQRQISFVKSHFSRQLEERLGLIEVQAPILSRVGDGTQDNLSGAEKAVQVKVK"
    "ALPDAQFEVVHSLAKWKRQTLGQHDFSAGEGLYTHMKALRPDEDRLSPLHSVYVDQWDWE"
)[:100]


class FakeToolRunner(ToolRunner):
    """ToolRunner whose external programs write canned outputs into the store.

    Parameters
    ----------
    store : MemoryStore, optional
        Shared store; pass the same one to simulate a rerun.
    depths : dict
        Number of sequences written to each ``-oa3m`` output (default 5000).
    template_table : str
        Contents of the template ``-blasttab`` table.
    contacts : dict
        Stage-2 output of ``metapsicovp2`` for each target prefix.
    timeouts : iterable
        Commands that behave as if they hit their wall-clock ceiling.
    """

    def __init__(self, store=None, depths=None, template_table="", contacts=None, timeouts=()):
        super().__init__(StageCache(store if store is not None else MemoryStore()))
        self.depths = depths or {}
        self.template_table = template_table
        self.contacts = contacts or {}
        self.timeouts = set(timeouts)

    def commands(self):
        return [argv[0] for argv in self.executed]

    def _execute(self, argv, stdin_text, timeout):
        command = argv[0]
        if command in self.timeouts:
            raise subprocess.TimeoutExpired(argv, timeout)
        handler = getattr(self, "_" + command.replace("-", "_"))
        stdout = handler(argv, stdin_text) or ""
        return subprocess.CompletedProcess(argv, 0, stdout, "")

    @staticmethod
    def _arg(argv, flag):
        return argv[argv.index(flag) + 1]

    def _blastpgp(self, argv, stdin_text):
        self.store.write(self._arg(argv, "-C"), "checkpoint\n")

    def _makemat(self, argv, stdin_text):
        self.store.write(f"{argv[2]}.mtx", "matrix\n")

    def _hhblits(self, argv, stdin_text):
        if "-blasttab" in argv:
            self.store.write(self._arg(argv, "-o"), "hhr\n")
            self.store.write(self._arg(argv, "-blasttab"), self.template_table)
            return
        out = self._arg(argv, "-oa3m")
        query = str(parse_fasta(self.store.read(self._arg(argv, "-i")))[0].seq)
        lines = [f">query\n{query}\n"]
        for n in range(self.depths.get(out, 5000) - 1):
            # lowercase insert states must be stripped from the alignment
            lines.append(f">hit{n}\n{query[:5]}ac{query[5:]}\n")
        self.store.write(out, "".join(lines))

    def _jackhmmer(self, argv, stdin_text):
        self.store.write(
            self._arg(argv, "--tblout"),
            "# target name  accession  query name\n"
            "UniRef100_A0A1 - query - 1e-30 100.0\n"
            "UniRef100_B7C2 - query - 1e-10 50.0\n",
        )

    def _esl_sfetch(self, argv, stdin_text):
        return ">UniRef100_A0A1 hit one\nMKTAYIAKQR\n>UniRef100_B7C2 hit two\nMKTAYLAKQR\n"

    def _ffindex_build(self, argv, stdin_text):
        self.store.write(argv[2], "a3m data\n")
        self.store.write(argv[3], "index\n")

    def _cstranslate(self, argv, stdin_text):
        self.store.write(f"{self._arg(argv, '-o')}.ffdata", "cs219\n")

    def _psipred(self, argv, stdin_text):
        return "raw ss\n"

    def _psipass2(self, argv, stdin_text):
        self.store.write(argv[5], "ss2\n")
        return "horiz\n"

    def _solvpred(self, argv, stdin_text):
        return "solv\n"

    def _alnstats(self, argv, stdin_text):
        self.store.write(argv[2], "colstats\n")
        self.store.write(argv[3], "pairstats\n")

    def _psicov(self, argv, stdin_text):
        return "1 10 0 8 0.5\n"

    def _freecontact(self, argv, stdin_text):
        return "1 A 10 A 0.1 0.2\n"

    def _ccmpred(self, argv, stdin_text):
        self.store.write(argv[-1], "0.0 0.1\n0.1 0.0\n")

    def _metapsicov(self, argv, stdin_text):
        return "1 10 0 8 0.5\n"

    def _metapsicovp2(self, argv, stdin_text):
        prefix = argv[1][: -len(".metapsicov.stage1")]
        return self.contacts.get(prefix, "")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture
def sample_query_file(temp_dir):
    """Create a sample query FASTA file for testing."""
    query_file = os.path.join(temp_dir, "query.fasta")
    with open(query_file, 'w') as f:
        f.write(">sp|P00001|TEST_PROTEIN test protein\n")
        f.write(QUERY_RESIDUES[:60] + "\n")
        f.write(QUERY_RESIDUES[60:] + "\n")
    return query_file


@pytest.fixture
def databases():
    return Databases(
        uniref90="/db/uniref90",
        uniref100="/db/uniref100.fasta",
        hhblits="/db/uniclust30",
        templates="/db/pdb70",
    )


@pytest.fixture
def config():
    return PipelineConfig(data_dir="/data/metapsicov", psipred_data_dir="/data/psipred")


@pytest.fixture
def store():
    return MemoryStore()
