"""
Multiple sequence alignment construction for pymetapsicov.

The primary alignment comes from an HHblits search of the clustered
sequence database. Shallow primary alignments are supplemented by a
jackhmmer search of UniRef100 whose hits are turned into an ad-hoc HHblits
library and searched again, seeded from the primary alignment. The deeper
of the two becomes the canonical ``<prefix>.aln``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Databases, PipelineConfig
from .sequences import (
    alignment_depth,
    hit_ids_from_tblout,
    merge_query,
    parse_fasta,
    split_records,
    strip_a3m,
)
from .tools import ToolRunner

logger = logging.getLogger(__name__)


@dataclass
class AlignmentResult:
    """An aligned-columns-only alignment file and its depth."""

    path: str
    depth: int
    method: str


def select_alignment(primary: AlignmentResult, secondary: Optional[AlignmentResult]) -> AlignmentResult:
    """Pick the canonical alignment.

    The jackhmmer-derived alignment wins only when that branch ran and its
    depth is strictly greater; ties keep the HHblits alignment.
    """

    if secondary is not None and secondary.depth > primary.depth:
        return secondary
    return primary


class AlignmentBuilder:
    """Builds the profile and the canonical alignment for one target.

    Parameters
    ----------
    runner : ToolRunner
        Invoker bound to the job workspace.
    databases : Databases
        Search databases.
    config : PipelineConfig
        Thresholds.
    threads : int
        Thread count passed to each search tool.
    """

    def __init__(self, runner: ToolRunner, databases: Databases, config: PipelineConfig, threads: int = 1):
        self.runner = runner
        self.databases = databases
        self.config = config
        self.threads = threads

    @property
    def cache(self):
        return self.runner.cache

    @property
    def store(self):
        return self.runner.store

    def build_profile(self, job_id: str) -> str:
        """Run the PSI-BLAST profile search and format the checkpoint.

        Profile files are keyed by the job id and shared by every domain
        run of the job.

        Returns
        -------
        str
            Name of the ``.mtx`` profile matrix.
        """

        chk = f"{job_id}.chk"
        mtx = f"{job_id}.mtx"

        self.runner.invoke(
            "blastpgp",
            [
                "-a", self.threads,
                "-b", 0,
                "-v", 5000,
                "-j", 3,
                "-h", 0.001,
                "-d", self.databases.uniref90,
                "-i", f"{job_id}.fasta",
                "-C", chk,
            ],
            creates=chk,
        )

        if not self.cache.has(mtx):
            # makemat reads the checkpoint and sequence names from these files
            self.store.write(f"{job_id}.pn", f"{chk}\n")
            self.store.write(f"{job_id}.sn", f"{job_id}.fasta\n")
        self.runner.invoke("makemat", ["-P", job_id], creates=mtx)
        return mtx

    def build_primary(self, prefix: str) -> AlignmentResult:
        a3m = f"{prefix}.a3m"
        self.runner.invoke(
            "hhblits",
            [
                "-i", f"{prefix}.fasta",
                "-d", self.databases.hhblits,
                "-oa3m", a3m,
                "-n", 3,
                "-e", 0.001,
                "-diff", "inf",
                "-cov", 50,
                "-id", 99,
                "-cpu", self.threads,
            ],
            creates=a3m,
        )
        aln = f"{prefix}.hhbaln"
        depth = alignment_depth(self._strip(a3m, aln))
        logger.info(f"HHblits alignment for {prefix} has {depth} sequences")
        return AlignmentResult(path=aln, depth=depth, method="hhblits")

    def build_secondary(self, prefix: str) -> AlignmentResult:
        """Deepen a shallow alignment through jackhmmer hits on UniRef100."""

        fasta = f"{prefix}.fasta"
        tbl = f"{prefix}.tbl"
        self.runner.invoke(
            "jackhmmer",
            [
                "--cpu", self.threads,
                "-N", 3,
                "-E", 10,
                "--incE", "1e-3",
                "--noali",
                "--tblout", tbl,
                fasta,
                self.databases.uniref100,
            ],
            creates=tbl,
        )

        jackdb = f"{prefix}.jackdb"
        if not self.cache.has(f"{jackdb}_a3m.ffdata"):
            records = self._fetch_hits(prefix)
            query = parse_fasta(self.store.read(fasta))[0]
            records, appended = merge_query(records, query)
            if appended:
                logger.debug(f"Query added to the {len(records) - 1} jackhmmer hits for {prefix}")

            split_dir = f"{prefix}.jackdir"
            for name, text in split_records(records):
                self.store.write(f"{split_dir}/{name}", text)
            self.runner.invoke(
                "ffindex_build",
                ["-s", f"{jackdb}_a3m.ffdata", f"{jackdb}_a3m.ffindex", split_dir],
                creates=f"{jackdb}_a3m.ffdata",
            )
        self.runner.invoke(
            "cstranslate",
            ["-f", "-x", 0.3, "-c", 4, "-I", "a3m", "-i", f"{jackdb}_a3m", "-o", f"{jackdb}_cs219"],
            creates=f"{jackdb}_cs219.ffdata",
        )

        # The HHblits alignment is copied before seeding so a finished
        # search is recognisable on restart
        seed = f"{prefix}.hhb.a3m"
        jack_a3m = f"{prefix}.jack.a3m"
        if not (self.store.exists(seed) and self.cache.has(jack_a3m)):
            self.store.copy(f"{prefix}.a3m", seed)
            self.runner.invoke(
                "hhblits",
                [
                    "-i", seed,
                    "-d", jackdb,
                    "-oa3m", jack_a3m,
                    "-n", 3,
                    "-e", 0.001,
                    "-diff", "inf",
                    "-cov", 50,
                    "-id", 99,
                    "-cpu", self.threads,
                ],
                cache=False,
            )

        aln = f"{prefix}.jackaln"
        depth = alignment_depth(self._strip(jack_a3m, aln))
        logger.info(f"jackhmmer-seeded alignment for {prefix} has {depth} sequences")
        return AlignmentResult(path=aln, depth=depth, method="jackhmmer")

    def build(self, prefix: str) -> AlignmentResult:
        """Produce ``<prefix>.aln`` from the deeper of the two alignments."""

        primary = self.build_primary(prefix)
        secondary = None
        if primary.depth < self.config.jackhmmer_depth_threshold:
            secondary = self.build_secondary(prefix)

        chosen = select_alignment(primary, secondary)
        canonical = f"{prefix}.aln"
        if not self.cache.has(canonical):
            self.store.copy(chosen.path, canonical)
        logger.info(f"Using {chosen.method} alignment for {prefix} ({chosen.depth} sequences)")
        return AlignmentResult(path=canonical, depth=chosen.depth, method=chosen.method)

    def _fetch_hits(self, prefix: str):
        ids = hit_ids_from_tblout(self.store.read(f"{prefix}.tbl"))
        if not ids:
            return []
        id_list = f"{prefix}.jackids"
        self.store.write(id_list, "".join(f"{name}\n" for name in ids))
        result = self.runner.invoke(
            "esl-sfetch",
            ["-f", self.databases.uniref100, id_list],
            redirect_path=f"{prefix}.fseqs",
        )
        return parse_fasta(result.stdout)

    def _strip(self, a3m: str, aln: str) -> str:
        text = self.cache.get(aln)
        if text is None:
            text = strip_a3m(self.store.read(a3m))
            self.cache.put(aln, text)
        return text
