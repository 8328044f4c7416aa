from interview_lab.finalization.finalizer import Finalizable, FinalizeResult, SessionFinalizer
from interview_lab.finalization.report import ReportCache, SessionReport, build_report
from interview_lab.finalization.store import LocalReportStore, ReportStore, SupabaseReportStore, build_report_store

__all__ = [
    "Finalizable",
    "FinalizeResult",
    "LocalReportStore",
    "ReportCache",
    "ReportStore",
    "SessionFinalizer",
    "SessionReport",
    "SupabaseReportStore",
    "build_report",
    "build_report_store",
]
