"""
Main pipeline orchestration for pymetapsicov.
"""

import logging
import os
import shutil
import tempfile
from typing import Optional, Tuple

from .alignment import AlignmentBuilder
from .cache import StageCache, WorkspaceStore
from .config import Databases, PipelineConfig
from .domains import ContactMatrix, DomainMerger, find_domains, format_report
from .errors import WorkspaceMissing
from .features import FeatureStageRunner
from .sequences import Sequence, read_query, records_to_fasta
from .templates import mask_templates
from .tools import ToolRunner

logger = logging.getLogger(__name__)


def report_name(job_id: str) -> str:
    return f"{job_id}.metapsicov.stage3"


def predict_contacts(
    runner: ToolRunner,
    sequence: Sequence,
    databases: Databases,
    job_id: str,
    config: PipelineConfig,
    threads: int = 1,
) -> ContactMatrix:
    """Run masking, full-chain and per-domain prediction in one workspace.

    Parameters
    ----------
    runner : ToolRunner
        Invoker bound to the job workspace.
    sequence : Sequence
        Query sequence.
    databases : Databases
        Search databases.
    job_id : str
        Prefix of every workspace file.
    config : PipelineConfig
        Data files and thresholds.
    threads : int
        Thread count passed to the external tools.

    Returns
    -------
    ContactMatrix
        Merged contacts; also written to ``<job>.metapsicov.stage3``.
    """

    store = runner.store
    store.write(f"{job_id}.fasta", records_to_fasta([sequence.to_record()]))

    builder = AlignmentBuilder(runner, databases, config, threads)
    stage_runner = FeatureStageRunner(runner, builder, config, threads)

    # Template masking
    masked = mask_templates(runner, sequence, job_id, databases, config, threads)

    # Full-chain prediction seeds the contact map
    matrix = ContactMatrix(len(sequence), config.min_separation)
    full = stage_runner.run(job_id, job_id)
    matrix.seed(full.contacts)

    # Unmatched domains are predicted on their own and merged back
    domains = find_domains(masked, config.min_domain_length)
    logger.info(f"{len(domains)} unmatched domain(s) in {job_id}")
    DomainMerger(stage_runner, job_id).run(masked, matrix, domains)

    store.write(report_name(job_id), format_report(matrix))
    return matrix


def prepare_workspace(work_dir: Optional[str], out_dir: str) -> Tuple[str, bool]:
    """Return the workspace to use and whether it was created here.

    Raises
    ------
    WorkspaceMissing
        If ``work_dir`` is given but does not exist.
    """

    if work_dir is not None:
        if not os.path.isdir(work_dir):
            raise WorkspaceMissing(work_dir)
        return os.path.abspath(work_dir), False
    return tempfile.mkdtemp(prefix="metapsicov_", dir=out_dir), True


def run_metapsicov_pipeline(
    query_file: str,
    databases: Databases,
    job_id: str = "query",
    threads: int = 1,
    work_dir: Optional[str] = None,
    keep_temp: bool = False,
    out_dir: str = ".",
    config: Optional[PipelineConfig] = None,
) -> str:
    """
    Run the complete contact prediction pipeline for one query.

    Parameters
    ----------
    query_file : str
        FASTA file with the query sequence.
    databases : Databases
        UniRef90, UniRef100, HHblits sequence and template databases.
    job_id : str
        Prefix for all output files (default: "query").
    threads : int
        Threads passed to the external tools (default: 1).
    work_dir : str, optional
        Existing directory to run in and keep; intermediate files found
        there are reused.
    keep_temp : bool
        Keep the temporary workspace when no ``work_dir`` is given.
    out_dir : str
        Directory receiving the final contact report.
    config : PipelineConfig, optional
        Data locations and thresholds (default: from the environment).

    Returns
    -------
    str
        Path to the stage-3 contact report.
    """
    config = (config or PipelineConfig.from_env()).absolute()
    sequence = read_query(query_file)
    databases = databases.absolute()

    workspace, created = prepare_workspace(work_dir, out_dir)
    logger.info(f"Working in {workspace}")

    try:
        runner = ToolRunner(StageCache(WorkspaceStore(workspace)))
        predict_contacts(runner, sequence, databases, job_id, config, threads)

        report = os.path.join(out_dir, report_name(job_id))
        source = os.path.join(workspace, report_name(job_id))
        if os.path.abspath(source) != os.path.abspath(report):
            shutil.copyfile(source, report)
    finally:
        if created and not keep_temp:
            shutil.rmtree(workspace, ignore_errors=True)
        elif created:
            logger.info(f"Intermediate files kept in {workspace}")

    print(f"Pipeline completed! Contact predictions in {report}")
    return report
