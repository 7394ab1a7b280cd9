"""
Configuration for the pymetapsicov pipeline: databases, data files and
the thresholds that gate individual stages.
"""

import os
import sys
from dataclasses import dataclass, replace
from typing import List, Optional


# Stage-1 fusion uses one network per distance band
DISTANCE_BANDS = ("6A", "65A", "7A", "75A", "8A", "85A", "9A", "10A", "811A", "1012A")

REQUIRED_TOOLS = [
    "blastpgp",
    "makemat",
    "hhblits",
    "jackhmmer",
    "esl-sfetch",
    "ffindex_build",
    "cstranslate",
    "psipred",
    "psipass2",
    "solvpred",
    "alnstats",
    "psicov",
    "freecontact",
    "ccmpred",
    "metapsicov",
    "metapsicovp2",
]


@dataclass(frozen=True)
class Databases:
    """Sequence and profile databases passed on the command line."""

    uniref90: str
    uniref100: str
    hhblits: str
    templates: str

    def absolute(self) -> "Databases":
        # Tools run inside the workspace, so relative paths must be resolved first
        return Databases(
            uniref90=os.path.abspath(self.uniref90),
            uniref100=os.path.abspath(self.uniref100),
            hhblits=os.path.abspath(self.hhblits),
            templates=os.path.abspath(self.templates),
        )


@dataclass
class PipelineConfig:
    """Data locations and stage thresholds.

    Parameters
    ----------
    data_dir : str
        Directory holding the MetaPSICOV network weights.
    psipred_data_dir : str
        Directory holding the PSIPRED network weights.
    jackhmmer_depth_threshold : int
        Primary alignments shallower than this trigger the jackhmmer search.
    min_scoring_depth : int
        Minimum alignment depth for running psicov, freecontact and ccmpred.
    min_domain_length : int
        Shortest unmasked run that is rerun as a domain.
    template_identity : float
        Percent identity at which a template hit resolves query residues.
    top_contacts : int
        Number of stage-2 contacts kept per target.
    tool_timeout : int
        Wall-clock ceiling in seconds for psicov and ccmpred.
    min_separation : int
        Minimum sequence separation of reported contacts.
    """

    data_dir: str
    psipred_data_dir: str
    jackhmmer_depth_threshold: int = 3000
    min_scoring_depth: int = 10
    min_domain_length: int = 30
    template_identity: float = 98.0
    top_contacts: int = 5000
    tool_timeout: int = 86400
    min_separation: int = 5

    @classmethod
    def from_env(
        cls,
        data_dir: Optional[str] = None,
        psipred_data_dir: Optional[str] = None,
        **kwargs,
    ) -> "PipelineConfig":
        """Build a config, falling back to environment variables and the
        conda share directory for data locations."""
        if data_dir is None:
            data_dir = os.environ.get(
                "METAPSICOV_DATA", os.path.join(sys.prefix, "share", "metapsicov", "data")
            )
        if psipred_data_dir is None:
            psipred_data_dir = os.environ.get(
                "PSIPRED_DATA", os.path.join(sys.prefix, "share", "psipred", "data")
            )
        return cls(data_dir=data_dir, psipred_data_dir=psipred_data_dir, **kwargs)

    def absolute(self) -> "PipelineConfig":
        # Weight files are read by tools running inside the workspace
        return replace(
            self,
            data_dir=os.path.abspath(self.data_dir),
            psipred_data_dir=os.path.abspath(self.psipred_data_dir),
        )

    def stage1_weights(self) -> List[str]:
        return [os.path.join(self.data_dir, f"weights_{band}.dat") for band in DISTANCE_BANDS]

    @property
    def stage2_weights(self) -> str:
        return os.path.join(self.data_dir, "weights_pass2.dat")

    @property
    def solvation_weights(self) -> str:
        return os.path.join(self.data_dir, "weights_solv.dat")

    def psipred_weights(self) -> List[str]:
        return [
            os.path.join(self.psipred_data_dir, name)
            for name in ("weights.dat", "weights.dat2", "weights.dat3")
        ]

    @property
    def psipass2_weights(self) -> str:
        return os.path.join(self.psipred_data_dir, "weights_p2.dat")
