"""
Template masking for pymetapsicov.

Query residues covered by a near-identical structural template already have
a known structure. They are masked so that only the unmatched stretches are
considered as domains for separate prediction.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

from .config import Databases, PipelineConfig
from .sequences import Sequence
from .tools import ToolRunner

logger = logging.getLogger(__name__)

# Columns of HHblits -blasttab output
BLASTTAB_FIELDS = 12

MASK_CHAR = " "


@dataclass(frozen=True)
class TemplateHit:
    """One row of the template hit table."""

    target: str
    identity: float
    query_start: int
    query_end: int
    evalue: float


@dataclass(frozen=True)
class MaskedSequence:
    """A query sequence with a per-residue resolved-by-template flag."""

    sequence: Sequence
    resolved: Tuple[bool, ...]

    def __post_init__(self):
        if len(self.resolved) != len(self.sequence):
            raise ValueError("resolved flags must cover every residue")

    def __len__(self) -> int:
        return len(self.sequence)

    @property
    def masked(self) -> str:
        """The working sequence, blanks at template-resolved positions."""
        return "".join(
            MASK_CHAR if flag else residue
            for residue, flag in zip(self.sequence.residues, self.resolved)
        )

    @classmethod
    def from_masked(cls, sequence: Sequence, masked: str) -> "MaskedSequence":
        return cls(sequence, tuple(ch == MASK_CHAR for ch in masked))


def parse_template_hits(text: str) -> List[TemplateHit]:
    """Parse the tabular hit list of a template search.

    Reading stops at the first line that is not a hit-table row, so any
    alignment blocks that follow are never consulted.
    """

    hits = []
    for line in text.splitlines():
        if not line.strip() or line.startswith("#"):
            continue
        fields = line.split("\t")
        if len(fields) < BLASTTAB_FIELDS:
            break
        try:
            hits.append(
                TemplateHit(
                    target=fields[1],
                    identity=float(fields[2]),
                    query_start=int(fields[6]),
                    query_end=int(fields[7]),
                    evalue=float(fields[10]),
                )
            )
        except ValueError:
            break
    return hits


def mask_sequence(sequence: Sequence, hits: List[TemplateHit], min_identity: float = 98.0) -> MaskedSequence:
    """Mark residues covered by hits with at least ``min_identity`` percent identity.

    Hit coordinates are 1-based and inclusive.
    """

    resolved = [False] * len(sequence)
    for hit in hits:
        # HHblits reports fractional identity in -blasttab output
        identity = hit.identity * 100.0 if hit.identity <= 1.0 else hit.identity
        if identity < min_identity:
            continue
        start = max(hit.query_start, 1) - 1
        end = min(hit.query_end, len(sequence))
        for pos in range(start, end):
            resolved[pos] = True
        logger.debug(f"Template {hit.target} ({identity:.1f}%) resolves {hit.query_start}-{hit.query_end}")
    return MaskedSequence(sequence, tuple(resolved))


def search_templates(
    runner: ToolRunner,
    job_id: str,
    databases: Databases,
    threads: int = 1,
) -> List[TemplateHit]:
    """Search the query against the structure template database."""

    table = f"{job_id}.hhbtab"
    # The .hhr report always has a header, unlike a table with no hits
    report = f"{job_id}.templates.hhr"
    runner.invoke(
        "hhblits",
        [
            "-i", f"{job_id}.fasta",
            "-d", databases.templates,
            "-n", 1,
            "-cpu", threads,
            "-o", report,
            "-blasttab", table,
        ],
        creates=report,
    )
    if not runner.store.exists(table):
        return []
    return parse_template_hits(runner.store.read(table))


def mask_templates(
    runner: ToolRunner,
    sequence: Sequence,
    job_id: str,
    databases: Databases,
    config: PipelineConfig,
    threads: int = 1,
) -> MaskedSequence:
    hits = search_templates(runner, job_id, databases, threads)
    masked = mask_sequence(sequence, hits, config.template_identity)
    logger.info(
        f"{sum(masked.resolved)} of {len(sequence)} residues of {job_id} "
        f"are covered by templates at >= {config.template_identity}% identity"
    )
    return masked
