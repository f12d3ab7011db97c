"""Reports package."""

from church_ledger.reports.summary import ReportGenerator

__all__ = ["ReportGenerator"]
