"""JSON and CSV renderings of runs and diagnostic reports for admins."""
import csv
import io
import json
from typing import List

from callsync.models import SyncRun
from callsync.schemas import CallComparison, DiagnosticReport, SyncRunOut

MISSING_CALL_COLUMNS = [
    "callId",
    "status",
    "agentId",
    "agentStatus",
    "reason",
    "fromNumber",
    "toNumber",
    "callDate",
    "contactName",
]


def run_to_json(run: SyncRun) -> str:
    return SyncRunOut.model_validate(run).model_dump_json(by_alias=True, indent=2)


def report_to_json(report: DiagnosticReport) -> str:
    return report.model_dump_json(by_alias=True, indent=2)


def missing_calls_to_csv(report: DiagnosticReport) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=MISSING_CALL_COLUMNS)
    writer.writeheader()
    for call in report.missing_calls:
        row = call.model_dump(by_alias=True)
        writer.writerow({column: row.get(column) or "" for column in MISSING_CALL_COLUMNS})
    return output.getvalue()


def parse_missing_calls_csv(content: str) -> List[CallComparison]:
    reader = csv.DictReader(io.StringIO(content))
    return [
        CallComparison.model_validate({key: value or None for key, value in row.items()})
        for row in reader
    ]


def parse_report_json(content: str) -> DiagnosticReport:
    return DiagnosticReport.model_validate(json.loads(content))
