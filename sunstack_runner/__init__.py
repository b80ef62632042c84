"""
sunstack runner package

Run orchestration for the stacking pipeline: logging setup, stage error
handling, JSON-lines events and the phase sequence.
"""

from .phases import run_phases

__all__ = ["run_phases"]
