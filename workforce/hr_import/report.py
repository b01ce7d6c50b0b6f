from io import BytesIO
from typing import Tuple

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from workforce.db import models

REPORT_HEADERS = ["Linha", "E-mail", "Mensagem"]
REPORT_WIDTHS = [10, 36, 80]


def build_error_report(job: models.ImportJob) -> Tuple[bytes, str]:
    wb = Workbook()
    ws = wb.active
    ws.title = "ERROS"
    ws.append(REPORT_HEADERS)
    for error in sorted(job.errors or [], key=lambda item: item.get("row", 0)):
        ws.append([error.get("row"), error.get("email") or "", error.get("message") or ""])
    ws.freeze_panes = "A2"
    for idx, width in enumerate(REPORT_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width

    summary = wb.create_sheet("RESUMO")
    summary["A1"] = "Job"
    summary["B1"] = job.id
    summary["A2"] = "Status"
    summary["B2"] = job.status
    summary["A3"] = "Linhas"
    summary["B3"] = job.total_rows
    summary["A4"] = "Sucesso"
    summary["B4"] = job.success_count
    summary["A5"] = "Falhas"
    summary["B5"] = job.failed_count
    summary["A6"] = "Concluido em"
    summary["B6"] = job.completed_at.isoformat() if job.completed_at else ""

    out = BytesIO()
    wb.save(out)
    return out.getvalue(), f"hr_import_erros_{job.id}.xlsx"
