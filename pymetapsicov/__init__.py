"""
pymetapsicov: residue-residue contact prediction by orchestrating the
MetaPSICOV tool chain with template masking and domain reruns.
"""

__version__ = "0.1.0"
