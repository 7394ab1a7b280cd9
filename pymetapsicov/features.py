"""
Per-target feature generation and contact fusion for pymetapsicov.

For one target (the whole query or one domain) this runs secondary
structure and solvent accessibility prediction, alignment statistics, the
three contact scorers and both MetaPSICOV fusion stages.
"""

import logging
from dataclasses import dataclass, field
from io import StringIO
from typing import List, Tuple

import pandas as pd

from .alignment import AlignmentBuilder, AlignmentResult
from .config import PipelineConfig
from .tools import ToolRunner

logger = logging.getLogger(__name__)

CONTACT_COLUMNS = ["i", "j", "dmin", "dmax", "prob"]

Contact = Tuple[int, int, float]


@dataclass
class FeatureBundle:
    """Workspace files produced for one target."""

    prefix: str
    alignment: AlignmentResult
    ss2: str
    solv: str
    colstats: str
    pairstats: str
    psicov: str
    evfold: str
    ccmpred: str
    stage1: str = ""
    stage2: str = ""


@dataclass
class TargetPrediction:
    """Stage-2 contacts of one target in its local numbering."""

    prefix: str
    features: FeatureBundle
    contacts: List[Contact] = field(default_factory=list)


def read_contacts(text: str) -> pd.DataFrame:
    """Parse whitespace-separated ``i j dmin dmax prob`` lines.

    Parameters
    ----------
    text : str
        Contents of a stage-1 or stage-2 file.

    Returns
    -------
    pd.DataFrame
        One row per contact with columns i, j, dmin, dmax, prob.
    """

    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return pd.DataFrame(columns=CONTACT_COLUMNS)

    df = pd.read_csv(
        StringIO("\n".join(lines)),
        sep=r"\s+",
        header=None,
        names=CONTACT_COLUMNS,
        usecols=range(len(CONTACT_COLUMNS)),
    )
    df["line"] = lines
    return df


def select_top_contacts(text: str, limit: int) -> str:
    """Keep the ``limit`` most probable contacts, highest first.

    Equal probabilities keep the order the fusion tool wrote them in.
    Lines are passed through unchanged.
    """

    df = read_contacts(text)
    if df.empty:
        return ""
    top = df.sort_values("prob", ascending=False, kind="mergesort").head(limit)
    return "".join(f"{line}\n" for line in top["line"])


def contacts_from_text(text: str) -> List[Contact]:
    df = read_contacts(text)
    return [
        (int(row.i), int(row.j), float(row.prob))
        for row in df.itertuples(index=False)
    ]


class FeatureStageRunner:
    """Runs every prediction stage for a target prefix.

    Parameters
    ----------
    runner : ToolRunner
        Invoker bound to the job workspace.
    builder : AlignmentBuilder
        Produces the profile and canonical alignment.
    config : PipelineConfig
        Data files and thresholds.
    threads : int
        Thread count passed to the contact scorers.
    """

    def __init__(self, runner: ToolRunner, builder: AlignmentBuilder, config: PipelineConfig, threads: int = 1):
        self.runner = runner
        self.builder = builder
        self.config = config
        self.threads = threads

    @property
    def store(self):
        return self.runner.store

    def run(self, prefix: str, job_id: str) -> TargetPrediction:
        """Predict contacts for ``<prefix>.fasta``.

        Parameters
        ----------
        prefix : str
            Target prefix, the job id or ``<job>.<offset>`` for a domain.
        job_id : str
            Job id keying the shared profile files.

        Returns
        -------
        TargetPrediction
            Ranked stage-2 contacts in the target's own numbering.
        """

        mtx = self.builder.build_profile(job_id)
        alignment = self.builder.build(prefix)

        features = FeatureBundle(
            prefix=prefix,
            alignment=alignment,
            ss2=self.predict_secondary_structure(prefix, mtx),
            solv=self.predict_solvent_accessibility(prefix, mtx),
            colstats=f"{prefix}.colstats",
            pairstats=f"{prefix}.pairstats",
            psicov=f"{prefix}.psicov",
            evfold=f"{prefix}.evfold",
            ccmpred=f"{prefix}.ccmpred",
        )
        self.alignment_statistics(features)
        self.score_contacts(features)
        self.fuse_stage1(features)
        stage2_text = self.fuse_stage2(features)

        contacts = contacts_from_text(stage2_text)
        logger.info(f"{len(contacts)} stage-2 contacts for {prefix}")
        return TargetPrediction(prefix=prefix, features=features, contacts=contacts)

    def predict_secondary_structure(self, prefix: str, mtx: str) -> str:
        ss = f"{prefix}.ss"
        ss2 = f"{prefix}.ss2"
        self.runner.invoke("psipred", [mtx] + self.config.psipred_weights(), redirect_path=ss)
        # psipass2 smooths the raw predictions into the .ss2 profile
        self.runner.invoke(
            "psipass2",
            [self.config.psipass2_weights, 1, 1.0, 1.0, ss2, ss],
            redirect_path=f"{prefix}.horiz",
        )
        return ss2

    def predict_solvent_accessibility(self, prefix: str, mtx: str) -> str:
        solv = f"{prefix}.solv"
        self.runner.invoke("solvpred", [mtx, self.config.solvation_weights], redirect_path=solv)
        return solv

    def alignment_statistics(self, features: FeatureBundle) -> None:
        self.runner.invoke(
            "alnstats",
            [features.alignment.path, features.colstats, features.pairstats],
            creates=features.colstats,
        )

    def score_contacts(self, features: FeatureBundle) -> None:
        """Run psicov, freecontact and ccmpred on deep enough alignments.

        Shallow alignments get empty score files so that stage-1 fusion
        always finds its inputs.
        """

        aln = features.alignment.path
        if features.alignment.depth < self.config.min_scoring_depth:
            logger.info(
                f"Alignment for {features.prefix} has {features.alignment.depth} sequences; "
                "skipping psicov, freecontact and ccmpred"
            )
            for name in (features.psicov, features.evfold, features.ccmpred):
                if not self.runner.cache.has(name):
                    self.store.write(name, "")
            return

        self.runner.invoke(
            "psicov",
            ["-z", self.threads, "-o", "-d", 0.03, aln],
            redirect_path=features.psicov,
            timeout=self.config.tool_timeout,
        )
        self.runner.invoke(
            "freecontact",
            ["-a", self.threads],
            stdin_path=aln,
            redirect_path=features.evfold,
        )
        result = self.runner.invoke(
            "ccmpred",
            ["-t", self.threads, aln, features.ccmpred],
            creates=features.ccmpred,
            timeout=self.config.tool_timeout,
        )
        if result.timed_out:
            # Drop whatever ccmpred wrote before it was stopped
            self.store.write(features.ccmpred, "")

    def fuse_stage1(self, features: FeatureBundle) -> str:
        stage1 = f"{features.prefix}.metapsicov.stage1"
        self.runner.invoke(
            "metapsicov",
            [
                features.colstats,
                features.pairstats,
                features.psicov,
                features.evfold,
                features.ccmpred,
                features.ss2,
                features.solv,
            ]
            + self.config.stage1_weights(),
            redirect_path=stage1,
        )
        features.stage1 = stage1
        return stage1

    def fuse_stage2(self, features: FeatureBundle) -> str:
        """Rescore stage-1 contacts and keep the top-ranked pairs.

        Returns
        -------
        str
            Contents of ``<prefix>.metapsicov.stage2``.
        """

        stage2 = f"{features.prefix}.metapsicov.stage2"
        features.stage2 = stage2

        # The recorded selection size lets an empty result count as finished
        selection = f"top_contacts={self.config.top_contacts}"
        cached = self.runner.cache.get(stage2, inputs_hash=selection)
        if cached is not None:
            return cached

        result = self.runner.invoke(
            "metapsicovp2",
            [
                features.stage1,
                features.colstats,
                features.ss2,
                features.solv,
                self.config.stage2_weights,
            ],
            cache=False,
        )
        text = select_top_contacts(result.stdout, self.config.top_contacts)
        self.runner.cache.put(stage2, text, inputs_hash=selection)
        return text
