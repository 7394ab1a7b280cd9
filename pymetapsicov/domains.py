"""
Domain decomposition and contact map merging for pymetapsicov.

Runs of residues not covered by any template are predicted again as
stand-alone targets. Their contacts replace the full-chain prediction
inside the domain, shifted into the numbering of the full sequence.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Tuple

from .features import Contact, FeatureStageRunner
from .sequences import sequence_fasta
from .templates import MASK_CHAR, MaskedSequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Domain:
    """A contiguous residue range, 1-based and inclusive."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def offset(self) -> int:
        """Shift from domain numbering to full-sequence numbering."""
        return self.start - 1

    def prefix(self, job_id: str) -> str:
        return f"{job_id}.{self.offset}"

    def contains(self, position: int) -> bool:
        return self.start <= position <= self.end


def find_domains(masked: MaskedSequence, min_length: int = 30) -> List[Domain]:
    """Maximal runs of unmasked residues worth predicting on their own.

    A run qualifies if it is at least ``min_length`` long and shorter than
    the whole sequence; an unmasked full chain is already covered by the
    full-sequence prediction.
    """

    domains = []
    text = masked.masked
    n = len(text)
    pos = 0
    while pos < n:
        if text[pos] == MASK_CHAR:
            pos += 1
            continue
        run_start = pos
        while pos < n and text[pos] != MASK_CHAR:
            pos += 1
        run_length = pos - run_start
        if min_length <= run_length < n:
            domains.append(Domain(start=run_start + 1, end=pos))
    return domains


class ContactMatrix:
    """Sparse contact probabilities in full-sequence numbering.

    Parameters
    ----------
    length : int
        Query length N; reported pairs lie in 1..N.
    min_separation : int
        Minimum j - i of reported pairs.
    """

    def __init__(self, length: int, min_separation: int = 5):
        self.length = length
        self.min_separation = min_separation
        self._probs: Dict[Tuple[int, int], float] = {}

    def __len__(self) -> int:
        return len(self._probs)

    def __contains__(self, pair) -> bool:
        return pair in self._probs

    def get(self, i: int, j: int) -> float:
        return self._probs.get((i, j), 0.0)

    def set(self, i: int, j: int, prob: float) -> None:
        self._probs[(i, j)] = prob

    def seed(self, contacts: Iterable[Contact]) -> None:
        """Load full-sequence contacts, whose numbering is already global."""
        self.merge(contacts, offset=0)

    def clear_region(self, domain: Domain) -> int:
        """Drop every pair with both residues inside ``domain``.

        Returns
        -------
        int
            Number of pairs removed.
        """

        inside = [
            pair for pair in self._probs
            if domain.contains(pair[0]) and domain.contains(pair[1])
        ]
        for pair in inside:
            del self._probs[pair]
        return len(inside)

    def merge(self, contacts: Iterable[Contact], offset: int) -> None:
        for i, j, prob in contacts:
            self._probs[(i + offset, j + offset)] = prob

    def contacts(self) -> Iterator[Contact]:
        """Reportable contacts ordered by i then j."""
        for i in range(1, self.length + 1):
            for j in range(i + self.min_separation, self.length + 1):
                prob = self._probs.get((i, j), 0.0)
                if prob > 0:
                    yield i, j, prob


def format_report(matrix: ContactMatrix) -> str:
    """Stage-3 report text, one ``i j 0 8 prob`` line per contact."""
    return "".join(f"{i} {j} 0 8 {prob:g}\n" for i, j, prob in matrix.contacts())


class DomainMerger:
    """Predicts each domain separately and folds the results into a matrix.

    Parameters
    ----------
    stage_runner : FeatureStageRunner
        Runs the prediction stages for each domain target.
    job_id : str
        Job id; domain targets are named ``<job>.<offset>``.
    """

    def __init__(self, stage_runner: FeatureStageRunner, job_id: str):
        self.stage_runner = stage_runner
        self.job_id = job_id

    @property
    def store(self):
        return self.stage_runner.store

    def run(self, masked: MaskedSequence, matrix: ContactMatrix, domains: List[Domain]) -> None:
        residues = masked.sequence.residues
        for domain in domains:
            prefix = domain.prefix(self.job_id)
            logger.info(f"Predicting domain {domain.start}-{domain.end} as {prefix}")

            fasta = f"{prefix}.fasta"
            if not self.store.exists(fasta):
                self.store.write(fasta, sequence_fasta(prefix, residues[domain.start - 1:domain.end]))

            prediction = self.stage_runner.run(prefix, self.job_id)
            merge_domain(matrix, domain, prediction.contacts)


def merge_domain(matrix: ContactMatrix, domain: Domain, contacts: List[Contact]) -> None:
    """Replace the contacts inside ``domain`` with its own prediction."""
    removed = matrix.clear_region(domain)
    matrix.merge(contacts, domain.offset)
    logger.debug(
        f"Domain {domain.start}-{domain.end}: replaced {removed} full-chain pairs "
        f"with {len(contacts)} domain contacts"
    )
