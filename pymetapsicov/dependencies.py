"""
Dependency checking for pymetapsicov pipeline.
"""

import shutil
import sys
from typing import List, Optional

from .config import REQUIRED_TOOLS


def check_dependencies(tools: Optional[List[str]] = None):
    """Check that the external MetaPSICOV tool chain is on the PATH."""
    tools = tools or REQUIRED_TOOLS
    missing = [tool for tool in tools if not shutil.which(tool)]

    if missing:
        sys.stderr.write(
            f"Missing required dependencies: {', '.join(missing)}\n"
            "Please install the following tools:\n"
            "- metapsicov (metapsicov, metapsicovp2, alnstats, solvpred): conda install -c bioconda metapsicov\n"
            "- psipred (psipred, psipass2): conda install -c bioconda psipred\n"
            "- blast-legacy (blastpgp, makemat): conda install -c bioconda blast-legacy\n"
            "- hhsuite (hhblits, ffindex_build, cstranslate): conda install -c bioconda hhsuite\n"
            "- hmmer (jackhmmer, esl-sfetch): conda install -c bioconda hmmer\n"
            "- psicov, freecontact, ccmpred: conda install -c bioconda psicov freecontact ccmpred\n"
        )
        sys.exit(1)
