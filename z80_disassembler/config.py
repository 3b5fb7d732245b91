"""
Z80 Disassembler — Analysis Configuration
=========================================

Limits and defaults shared by the memory model, the subroutine walker
and the z80kit CLI. Override per run by passing an AnalyzerConfig.
"""

from dataclasses import dataclass


# =============================================================================
#  ADDRESS SPACE
# =============================================================================
MAX_MEM_SIZE = 0x10000     # 64K, addresses wrap at this boundary
ADDRESS_MASK = MAX_MEM_SIZE - 1
DEFAULT_ORIGIN = 0x0000    # load address when none is given


# =============================================================================
#  WALKER LIMITS
#  Each conditional branch forks a path, so a long run of if/else blocks
#  grows the work list quickly. These stop runaway traversals.
# =============================================================================
MAX_PATHS = 10_000         # finished paths per subroutine
MAX_STEPS = 200_000        # decoded instructions per subroutine


# =============================================================================
#  LOGGING
# =============================================================================
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class AnalyzerConfig:
    """Per-run settings for SubroutineAnalyzer."""
    max_paths: int = MAX_PATHS
    max_steps: int = MAX_STEPS
    follow_calls: bool = True    # False: treat every CALL/RST as opaque
    prune_duplicates: bool = True
