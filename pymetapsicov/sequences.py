"""
Sequence, alignment and hit-list helpers for the pymetapsicov pipeline.
"""

from dataclasses import dataclass
from io import StringIO
from typing import Iterable, List, Tuple

from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .errors import MalformedInput


@dataclass(frozen=True)
class Sequence:
    """A query protein sequence.

    Parameters
    ----------
    identifier : str
        First word of the FASTA header.
    residues : str
        One-letter amino-acid string.
    description : str
        Full FASTA header line without the leading '>'.
    """

    identifier: str
    residues: str
    description: str = ""

    def __len__(self) -> int:
        return len(self.residues)

    def to_record(self) -> SeqRecord:
        return SeqRecord(
            Seq(self.residues),
            id=self.identifier,
            description=self.description or self.identifier,
        )


def parse_fasta(text: str) -> List[SeqRecord]:
    return list(SeqIO.parse(StringIO(text), "fasta"))


def records_to_fasta(records: Iterable[SeqRecord]) -> str:
    handle = StringIO()
    SeqIO.write(records, handle, "fasta")
    return handle.getvalue()


def read_query(path: str) -> Sequence:
    """Read the first record of a FASTA file as the query sequence.

    Raises
    ------
    MalformedInput
        If the file cannot be read or holds no residues.
    """

    try:
        with open(path, "r") as f:
            records = parse_fasta(f.read())
    except OSError as e:
        raise MalformedInput(f"Cannot read query sequence {path}: {e}") from e

    if not records or len(records[0].seq) == 0:
        raise MalformedInput(f"No sequence found in {path}")

    record = records[0]
    residues = str(record.seq).upper().replace("*", "")
    return Sequence(identifier=record.id, residues=residues, description=record.description)


def sequence_fasta(identifier: str, residues: str) -> str:
    """FASTA text for a single sequence."""
    return records_to_fasta([SeqRecord(Seq(residues), id=identifier, description="")])


def strip_a3m(text: str) -> str:
    """Reduce an A3M alignment to match columns, one sequence per line.

    Headers are dropped and lowercase insert states removed, so every
    output line has the length of the query.
    """

    lines = []
    for record in parse_fasta(text):
        aligned = "".join(ch for ch in str(record.seq) if not ch.islower())
        lines.append(aligned + "\n")
    return "".join(lines)


def alignment_depth(text: str) -> int:
    """Number of sequences in a one-sequence-per-line alignment."""
    return sum(1 for line in text.splitlines() if line.strip())


def hit_ids_from_tblout(text: str) -> List[str]:
    """Unique target names from a HMMER ``--tblout`` table, in rank order."""

    seen = set()
    ids = []
    for line in text.splitlines():
        if not line.strip() or line.startswith("#"):
            continue
        target = line.split()[0]
        if target not in seen:
            seen.add(target)
            ids.append(target)
    return ids


def merge_query(hits: List[SeqRecord], query: SeqRecord) -> Tuple[List[SeqRecord], bool]:
    """Add the query to a set of fetched hits unless its header is present.

    Returns
    -------
    Tuple[List[SeqRecord], bool]
        The combined records and whether the query had to be appended.
    """

    headers = {record.description for record in hits}
    if query.description in headers:
        return list(hits), False
    return list(hits) + [query], True


def split_records(records: List[SeqRecord], prefix: str = "seq") -> List[Tuple[str, str]]:
    """One (file name, FASTA text) pair per record."""

    return [
        (f"{prefix}{n}.a3m", records_to_fasta([record]))
        for n, record in enumerate(records, start=1)
    ]
