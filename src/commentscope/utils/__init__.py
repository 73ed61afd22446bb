"""Utility modules for CommentScope."""

from .data_prep import export_report_json, export_to_json, prepare_export

__all__ = [
    "export_report_json",
    "export_to_json",
    "prepare_export",
]
