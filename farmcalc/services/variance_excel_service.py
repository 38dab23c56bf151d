"""
Variance Excel Export Service.
Generates the season plan-vs-actual workbook (application and pass variance).
"""
from io import BytesIO
from datetime import datetime
from typing import Any, Optional
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill, Border, Side
from openpyxl.utils import get_column_letter

from farmcalc.services.application_variance import ApplicationVarianceSummary
from farmcalc.services.pass_variance import PassVarianceSummary

FARMCALC_GREEN = "15803D"
TOTALS_BG = "DCFCE7"
WARNING_BG = "FEF3C7"

APPLICATION_HEADERS = [
    "Crop", "Pass", "Product", "Unit",
    "Planned Rate", "Actual Rate", "Rate Var", "Rate Var %",
    "Planned Acres", "Actual Acres",
    "Planned Total", "Actual Total", "Total Var", "Total Var %",
    "Applications", "Status",
]

PASS_HEADERS = [
    "Crop", "Pass", "Planned Cost", "Actual Cost (Allocated)",
    "Variance", "Variance %", "Flags",
]

MONEY_FORMAT = '"$"#,##0.00'
NUMBER_FORMAT = "#,##0.00"
PCT_FORMAT = '0.0"%"'


class VarianceExcelService:
    """Service for generating variance Excel reports."""

    def __init__(self):
        self.header_fill = PatternFill(start_color=FARMCALC_GREEN, end_color=FARMCALC_GREEN, fill_type="solid")
        self.header_font = Font(bold=True, color="FFFFFF", size=11)
        self.title_font = Font(bold=True, size=16, color=FARMCALC_GREEN)
        self.subtitle_font = Font(bold=True, size=12, color=FARMCALC_GREEN)
        self.totals_fill = PatternFill(start_color=TOTALS_BG, end_color=TOTALS_BG, fill_type="solid")
        self.warning_fill = PatternFill(start_color=WARNING_BG, end_color=WARNING_BG, fill_type="solid")
        self.border = Border(
            left=Side(style='thin'),
            right=Side(style='thin'),
            top=Side(style='thin'),
            bottom=Side(style='thin')
        )

    def _apply_header_style(self, ws, row_num: int, max_col: int):
        """Apply header styling to a row."""
        for col in range(1, max_col + 1):
            cell = ws.cell(row=row_num, column=col)
            cell.fill = self.header_fill
            cell.font = self.header_font
            cell.alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)
            cell.border = self.border

    def _auto_adjust_columns(self, ws):
        """Auto-adjust column widths."""
        for column in ws.columns:
            max_length = 0
            column_letter = get_column_letter(column[0].column)
            for cell in column:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))
            ws.column_dimensions[column_letter].width = min(max(max_length + 2, 12), 40)

    def _write_title(self, ws, title: str, season_name: str, generated_at: datetime) -> int:
        ws.cell(row=1, column=1, value=title).font = self.title_font
        ws.cell(row=2, column=1, value=f"Season: {season_name}").font = self.subtitle_font
        ws.cell(row=3, column=1, value=f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M')}").font = Font(italic=True)
        return 5

    def _write_row(self, ws, row: int, values, formats):
        for col, (value, fmt) in enumerate(zip(values, formats), start=1):
            cell = ws.cell(row=row, column=col, value=value)
            cell.border = self.border
            if fmt and value is not None:
                cell.number_format = fmt

    def generate_variance_excel(
        self,
        application_variance: ApplicationVarianceSummary,
        pass_variance: PassVarianceSummary,
        season_name: str = "Season",
        generated_at: Optional[datetime] = None,
    ) -> BytesIO:
        """
        Generate the variance workbook.

        Returns:
            BytesIO with Excel file content
        """
        generated_at = generated_at or datetime.now()
        wb = Workbook()
        if wb.active:
            wb.remove(wb.active)

        self._create_application_sheet(wb, application_variance, season_name, generated_at)
        self._create_pass_sheet(wb, pass_variance, season_name, generated_at)

        buffer = BytesIO()
        wb.save(buffer)
        buffer.seek(0)
        return buffer

    def _create_application_sheet(self, wb, summary: ApplicationVarianceSummary, season_name: str, generated_at: datetime) -> Any:
        ws = wb.create_sheet("Application Variance")
        row = self._write_title(ws, "APPLICATION VARIANCE", season_name, generated_at)

        for col, header in enumerate(APPLICATION_HEADERS, start=1):
            ws.cell(row=row, column=col, value=header)
        self._apply_header_style(ws, row, len(APPLICATION_HEADERS))
        row += 1

        formats = [
            None, None, None, None,
            NUMBER_FORMAT, NUMBER_FORMAT, NUMBER_FORMAT, PCT_FORMAT,
            NUMBER_FORMAT, NUMBER_FORMAT,
            NUMBER_FORMAT, NUMBER_FORMAT, NUMBER_FORMAT, PCT_FORMAT,
            None, None,
        ]
        for r in summary.rows:
            self._write_row(ws, row, [
                r.crop_name, r.timing_name, r.product_name, r.rate_unit,
                r.planned_rate, r.actual_rate, r.rate_variance, r.rate_variance_pct,
                r.planned_acres, r.actual_acres,
                r.planned_total, r.actual_total, r.total_variance, r.total_variance_pct,
                r.application_count, r.status,
            ], formats)
            if r.status in ("partial", "over-applied"):
                ws.cell(row=row, column=len(APPLICATION_HEADERS)).fill = self.warning_fill
            row += 1

        row += 1
        ws.cell(row=row, column=1, value="TOTALS").font = self.subtitle_font
        row += 1
        totals = summary.totals
        for label, value in [
            ("Planned acres", totals.planned_acres),
            ("Applied acres", totals.applied_acres),
            ("Passes planned", totals.passes_planned),
            ("Passes started", totals.passes_started),
            ("Passes complete", totals.passes_complete),
        ]:
            ws.cell(row=row, column=1, value=label).font = Font(bold=True)
            cell = ws.cell(row=row, column=2, value=value)
            cell.fill = self.totals_fill
            if isinstance(value, float):
                cell.number_format = NUMBER_FORMAT
            row += 1

        self._auto_adjust_columns(ws)
        return ws

    def _create_pass_sheet(self, wb, summary: PassVarianceSummary, season_name: str, generated_at: datetime) -> Any:
        ws = wb.create_sheet("Pass Variance")
        row = self._write_title(ws, "PASS VARIANCE (COST ALLOCATION)", season_name, generated_at)

        for col, header in enumerate(PASS_HEADERS, start=1):
            ws.cell(row=row, column=col, value=header)
        self._apply_header_style(ws, row, len(PASS_HEADERS))
        row += 1

        formats = [None, None, MONEY_FORMAT, MONEY_FORMAT, MONEY_FORMAT, PCT_FORMAT, None]
        for r in summary.rows:
            flags = []
            if r.flags.missing_planned_price:
                flags.append("missing planned price")
            if r.flags.no_invoices:
                flags.append("no invoices")
            self._write_row(ws, row, [
                r.crop_name, r.timing_name, r.planned_cost, r.actual_cost_allocated,
                r.variance, r.variance_pct, ", ".join(flags) or None,
            ], formats)
            if flags:
                ws.cell(row=row, column=len(PASS_HEADERS)).fill = self.warning_fill
            row += 1

        row += 1
        ws.cell(row=row, column=1, value="TOTALS").font = self.subtitle_font
        row += 1
        for label, value in [
            ("Planned total", summary.planned_total),
            ("Actual allocated", summary.actual_total_allocated),
            ("Variance", summary.variance_total),
        ]:
            ws.cell(row=row, column=1, value=label).font = Font(bold=True)
            cell = ws.cell(row=row, column=2, value=value)
            cell.fill = self.totals_fill
            cell.number_format = MONEY_FORMAT
            row += 1

        self._auto_adjust_columns(ws)
        return ws


variance_excel_service = VarianceExcelService()
