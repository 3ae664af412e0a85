"""Excel marks sheet generation and upload processing."""

import logging
from decimal import Decimal, InvalidOperation
from io import BytesIO

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from sqlalchemy.orm import Session

from gradebook.core.exceptions import UploadError, ValidationError
from gradebook.core.policy import CurrentUserContext
from gradebook.schemas.marks import (
    MarksEntry,
    MarksEntryRoster,
    MarksUploadRowError,
    SubmitMarksRequest,
    SubmitMarksResponse,
)
from gradebook.services.marks import MarksService

logger = logging.getLogger(__name__)

SHEET_TITLE = "Marks"
HEADER_ROW = 2
FIRST_DATA_ROW = 3
ABSENT_VALUES = {"y", "yes", "true", "1", "ab", "absent"}


class MarksSheetService:
    """Marks entry through an .xlsx sheet for one exam subject and section."""

    def __init__(self, db: Session, advanced_grade_threshold: int = 11):
        self.db = db
        self.marks = MarksService(db, advanced_grade_threshold)

    # ==========================================
    # Template Generation
    # ==========================================

    def generate_template(
        self,
        context: CurrentUserContext,
        exam_subject_id: int,
        section_id: int,
    ) -> bytes:
        """Generate the marks sheet with the section roster and existing marks."""
        roster = self.marks.fetch_marks_for_entry(context, exam_subject_id, section_id)
        return build_workbook(roster)

    # ==========================================
    # Excel Upload Processing
    # ==========================================

    def process_upload(
        self,
        context: CurrentUserContext,
        exam_subject_id: int,
        section_id: int,
        file_content: bytes,
    ) -> SubmitMarksResponse:
        """Read a filled marks sheet and submit it as one marks batch."""
        logger.info(
            f"[MARKS UPLOAD] Starting - exam_subject_id={exam_subject_id}, section_id={section_id}, "
            f"file_size={len(file_content)} bytes"
        )
        entries, errors = parse_workbook(file_content)
        if errors:
            logger.info(f"[MARKS UPLOAD] Rejected sheet with {len(errors)} row errors")
            raise ValidationError(
                "Marks sheet has invalid rows",
                details={"errors": [e.model_dump() for e in errors]},
            )
        if not entries:
            raise ValidationError("Marks sheet contains no marks")

        response = self.marks.submit_marks(
            context,
            SubmitMarksRequest(
                exam_subject_id=exam_subject_id,
                section_id=section_id,
                entries=entries,
            ),
        )
        logger.info(f"[MARKS UPLOAD] Completed: {response.saved_count} saved, {len(response.rejected)} rejected")
        return response


def build_workbook(roster: MarksEntryRoster) -> bytes:
    """Render a marks entry roster as an .xlsx workbook."""
    exam_subject = roster.exam_subject
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE

    # Styles
    title_font = Font(bold=True, size=14)
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    disabled_fill = PatternFill(start_color="D9D9D9", end_color="D9D9D9", fill_type="solid")
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )
    center_align = Alignment(horizontal='center', vertical='center')

    title_text = f"{exam_subject.subject_name} - Exam Subject {exam_subject.id} - Section {roster.section_id}"
    ws.merge_cells('A1:G1')
    title_cell = ws.cell(row=1, column=1, value=title_text)
    title_cell.font = title_font
    title_cell.alignment = center_align
    title_cell.fill = PatternFill(start_color="B4C6E7", end_color="B4C6E7", fill_type="solid")

    headers = [
        "Student ID",
        "Roll No",
        "Student Name",
        f"Theory Marks (max {exam_subject.theory_full_marks})",
        f"Practical Marks (max {exam_subject.practical_full_marks})",
        "Absent (Y/N)",
        "Remarks",
    ]
    for col_idx, header in enumerate(headers, start=1):
        cell = ws.cell(row=HEADER_ROW, column=col_idx, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.border = thin_border
        cell.alignment = center_align

    row_idx = FIRST_DATA_ROW
    for student in roster.students:
        if not student.is_subject_enrolled:
            continue
        result = student.existing_result
        values = [
            student.student_id,
            student.roll_number,
            f"{student.first_name} {student.last_name}".strip(),
            float(result.marks_obtained) if result and result.marks_obtained is not None else None,
            float(result.practical_marks) if result and result.practical_marks is not None else None,
            "Y" if result and result.is_absent else "",
            result.remarks if result else "",
        ]
        for col_idx, value in enumerate(values, start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            cell.border = thin_border
            if (col_idx == 4 and not exam_subject.has_theory) or (
                col_idx == 5 and not exam_subject.has_practical
            ):
                cell.fill = disabled_fill
        row_idx += 1

    column_widths = {'A': 12, 'B': 10, 'C': 30, 'D': 22, 'E': 24, 'F': 14, 'G': 30}
    for col, width in column_widths.items():
        ws.column_dimensions[col].width = width

    instructions_ws = wb.create_sheet("Instructions")
    instructions_ws.column_dimensions['A'].width = 25
    instructions_ws.column_dimensions['B'].width = 60
    instructions = [
        ("MARKS SHEET INSTRUCTIONS", ""),
        ("", ""),
        ("Student ID", "Do not change - identifies the student"),
        ("Theory Marks", f"Between 0 and {exam_subject.theory_full_marks}; leave empty if not applicable"),
        ("Practical Marks", f"Between 0 and {exam_subject.practical_full_marks}; leave empty if not applicable"),
        ("Absent (Y/N)", "Y marks the student absent; theory marks are then ignored"),
        ("Remarks", "Optional comments"),
        ("", ""),
        ("NOTE:", "Rows without marks and not marked absent are skipped"),
    ]
    for row, (col1, col2) in enumerate(instructions, start=1):
        cell1 = instructions_ws.cell(row=row, column=1, value=col1)
        instructions_ws.cell(row=row, column=2, value=col2)
        if row == 1:
            cell1.font = Font(bold=True, size=14)
        elif col1 and col1.endswith(":"):
            cell1.font = Font(bold=True)

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()


def _parse_decimal(value) -> Decimal | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid marks value: '{value}'")


def parse_workbook(file_content: bytes) -> tuple[list[MarksEntry], list[MarksUploadRowError]]:
    """Read marks entries from a sheet produced by :func:`build_workbook`."""
    try:
        wb = load_workbook(BytesIO(file_content), data_only=True)
    except Exception as e:
        logger.error(f"[MARKS UPLOAD] Failed to load Excel: {str(e)}")
        raise UploadError(f"Invalid Excel file: {str(e)}")

    ws = wb[SHEET_TITLE] if SHEET_TITLE in wb.sheetnames else wb.active

    headers = [str(cell.value).strip().lower() if cell.value else "" for cell in ws[HEADER_ROW]]
    col_map: dict[str, int | None] = {
        "student_id": None,
        "theory": None,
        "practical": None,
        "absent": None,
        "remarks": None,
    }
    for idx, header in enumerate(headers):
        if "student" in header and "id" in header:
            col_map["student_id"] = idx
        elif "theory" in header:
            col_map["theory"] = idx
        elif "practical" in header or "internal" in header:
            col_map["practical"] = idx
        elif "absent" in header:
            col_map["absent"] = idx
        elif "remark" in header:
            col_map["remarks"] = idx

    if col_map["student_id"] is None:
        raise UploadError("Marks sheet is missing the Student ID column")

    def cell(row: tuple, key: str):
        idx = col_map[key]
        if idx is None or idx >= len(row):
            return None
        return row[idx]

    entries: list[MarksEntry] = []
    errors: list[MarksUploadRowError] = []
    skipped = 0
    for row_num, row in enumerate(
        ws.iter_rows(min_row=FIRST_DATA_ROW, values_only=True), start=FIRST_DATA_ROW
    ):
        if not any(v not in (None, "") for v in row):
            continue

        raw_id = cell(row, "student_id")
        try:
            student_id = int(raw_id)
        except (TypeError, ValueError):
            errors.append(MarksUploadRowError(
                row=row_num, column="Student ID", message=f"Invalid student id: '{raw_id}'"
            ))
            continue

        absent_raw = cell(row, "absent")
        is_absent = str(absent_raw).strip().lower() in ABSENT_VALUES if absent_raw is not None else False

        try:
            theory = _parse_decimal(cell(row, "theory"))
        except ValueError as e:
            errors.append(MarksUploadRowError(row=row_num, column="Theory Marks", message=str(e)))
            continue
        try:
            practical = _parse_decimal(cell(row, "practical"))
        except ValueError as e:
            errors.append(MarksUploadRowError(row=row_num, column="Practical Marks", message=str(e)))
            continue

        if theory is None and practical is None and not is_absent:
            skipped += 1
            continue

        remarks = cell(row, "remarks")
        remarks = str(remarks).strip() if remarks not in (None, "") else None
        entries.append(MarksEntry(
            student_id=student_id,
            marks_obtained=theory,
            practical_marks=practical,
            is_absent=is_absent,
            remarks=remarks,
        ))

    logger.info(f"[MARKS UPLOAD] Parsed {len(entries)} entries, {len(errors)} errors, {skipped} skipped")
    return entries, errors
