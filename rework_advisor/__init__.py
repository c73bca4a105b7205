"""Rework Advisor - ranked corrective actions for failed manufacturing tests."""

try:
    from rework_advisor._version import version as __version__
except ImportError:
    __version__ = "0.0.0.dev0"
