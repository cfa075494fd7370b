"""PatchPro reporting modules."""

from .report import ReportSink, describe_status, render_report
from .slack import SlackNotifier

__all__ = [
    "ReportSink",
    "SlackNotifier",
    "describe_status",
    "render_report",
]
