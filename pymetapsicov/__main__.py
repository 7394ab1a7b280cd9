import argparse
import logging
import os
import sys

from .__init__ import __version__
from .config import Databases, PipelineConfig
from .dependencies import check_dependencies
from .errors import MetapsicovError
from .pipeline import run_metapsicov_pipeline


def get_args():
    description = (
        "pymetapsicov: predict residue-residue contacts with MetaPSICOV,"
        + " rerunning template-free domains separately"
    )
    main_parser = argparse.ArgumentParser(
        description=description,
        prog="pymetapsicov",
    )

    # i/o args
    io_opts = main_parser.add_argument_group("Input and output")
    io_opts.add_argument(
        "query_file",
        metavar="QUERY_SEQUENCE",
        help="FASTA-format file containing the query protein sequence",
    )
    io_opts.add_argument(
        "-j",
        "--job-id",
        dest="job_id",
        help="prefix for all output files (default: query)",
        type=str,
        default="query",
    )
    io_opts.add_argument(
        "-o",
        "--out_dir",
        dest="output_dir",
        help="directory for the final contact predictions (default: current directory)",
        type=str,
        default=".",
    )
    io_opts.add_argument(
        "-w",
        "--work-dir",
        dest="work_dir",
        help=(
            "existing directory for intermediate files; files already present "
            + "there are reused and the directory is never removed"
        ),
        type=str,
        default=None,
    )
    io_opts.add_argument(
        "-k",
        "--keep-temp",
        dest="keep_temp",
        help="keep the temporary working directory (ignored with --work-dir)",
        action="store_true",
    )

    # database args
    db_opts = main_parser.add_argument_group("Databases")
    db_opts.add_argument("uniref90", metavar="UNIREF90_DB", help="BLAST database for the PSI-BLAST profile")
    db_opts.add_argument("uniref100", metavar="UNIREF100_DB", help="FASTA database for jackhmmer")
    db_opts.add_argument("hhblits_db", metavar="HHBLITS_SEQUENCE_DB", help="HHblits sequence database")
    db_opts.add_argument("template_db", metavar="HHBLITS_TEMPLATE_DB", help="HHblits structure template database")
    db_opts.add_argument(
        "-d",
        "--data-dir",
        dest="data_dir",
        help="directory with the MetaPSICOV weight files (default: $METAPSICOV_DATA)",
        type=str,
        default=None,
    )
    db_opts.add_argument(
        "--psipred-data",
        dest="psipred_data_dir",
        help="directory with the PSIPRED weight files (default: $PSIPRED_DATA)",
        type=str,
        default=None,
    )

    # run args
    run_opts = main_parser.add_argument_group("Run arguments")
    run_opts.add_argument(
        "-t",
        "--threads",
        dest="threads",
        help="number of threads for the external tools (default: 1)",
        type=int,
        default=1,
    )
    run_opts.add_argument(
        "--verbose",
        dest="verbose",
        help="log cache hits and other debug messages",
        action="store_true",
    )

    # main parser args
    main_parser.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {__version__}"
    )

    args = main_parser.parse_args()

    return args


def main():
    args = get_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    check_dependencies()

    if not os.path.exists(args.output_dir):
        os.makedirs(args.output_dir, exist_ok=True)

    config = PipelineConfig.from_env(
        data_dir=args.data_dir,
        psipred_data_dir=args.psipred_data_dir,
    )
    databases = Databases(
        uniref90=args.uniref90,
        uniref100=args.uniref100,
        hhblits=args.hhblits_db,
        templates=args.template_db,
    )

    # Run the pipeline
    try:
        run_metapsicov_pipeline(
            query_file=args.query_file,
            databases=databases,
            job_id=args.job_id,
            threads=args.threads,
            work_dir=args.work_dir,
            keep_temp=args.keep_temp,
            out_dir=args.output_dir,
            config=config,
        )
    except MetapsicovError as e:
        sys.stderr.write(f"Error: {e.message}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
