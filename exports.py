"""CSV and PDF renderings of a day's checklist projection (admin only)."""
import csv
import io
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfgen import canvas

from checklist import build_projection, parse_date
from errors import EmptyExport, Forbidden, UnsupportedFormat

HEADERS = ['Task ID', 'Area', 'Task Name', 'Description', 'Status', 'Staff Name', 'Timestamp']

# PDF layout, in points. Text longer than its column limit is cut to that
# many characters; None means never truncated.
PAGE_SIZE = landscape(A4)
MARGIN = 30
COLUMN_WIDTHS = [60, 100, 100, 200, 50, 100, 120]
TRUNCATE_AT = [None, 15, 15, 35, None, 15, None]
ROW_HEIGHT = 18
TITLE_BLOCK_HEIGHT = 110
FOOTER_HEIGHT = 30

CONTENT_TYPES = {'csv': 'text/csv', 'pdf': 'application/pdf'}


@dataclass
class ExportPayload:
    data: bytes
    filename: str
    content_type: str


def format_timestamp(value, tz):
    # 1/5/2024, 9:03:00 AM
    if not value:
        return ''
    moment = datetime.fromisoformat(value).astimezone(tz)
    hour = moment.hour % 12 or 12
    meridiem = 'AM' if moment.hour < 12 else 'PM'
    return f'{moment.month}/{moment.day}/{moment.year}, {hour}:{moment:%M:%S} {meridiem}'

def export_rows(rows, tz):
    return [
        [row.code, row.area_name, row.name, row.description,
         'Yes' if row.entry.status else 'No', row.entry.staff_name or '',
         format_timestamp(row.entry.completed_at, tz)]
        for row in rows
    ]

def render_csv(table):
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(HEADERS)
    writer.writerows(table)
    return buf.getvalue().encode('utf-8')

def truncate(values):
    return [value if limit is None else value[:limit] for value, limit in zip(values, TRUNCATE_AT)]

def paginate(table, page_size=PAGE_SIZE):
    """Split rows into pages; page 1 loses TITLE_BLOCK_HEIGHT to the title."""
    _, height = page_size
    pages, current = [], []
    y = height - MARGIN - TITLE_BLOCK_HEIGHT
    for values in table:
        if y < MARGIN + FOOTER_HEIGHT:
            pages.append(current)
            current = []
            y = height - MARGIN
        current.append((y, values))
        y -= ROW_HEIGHT
    pages.append(current)
    return pages

def _draw_cells(c, y, values):
    x = MARGIN
    for value, width in zip(values, COLUMN_WIDTHS):
        c.drawString(x, y, value or '')
        x += width

def render_pdf(table, day, clinic_name, generated_at):
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=PAGE_SIZE)
    width, height = PAGE_SIZE
    top = height - MARGIN

    c.setFont('Helvetica-Bold', 20)
    c.drawCentredString(width / 2, top - 20, clinic_name)
    c.setFont('Helvetica', 16)
    c.drawCentredString(width / 2, top - 42, 'Daily Checklist Report')
    c.setFont('Helvetica', 12)
    c.drawCentredString(width / 2, top - 60, f'Date: {day:%A, %B} {day.day}, {day.year}')

    header_y = top - TITLE_BLOCK_HEIGHT + 25
    c.setFont('Helvetica-Bold', 9)
    _draw_cells(c, header_y, HEADERS)
    c.line(MARGIN, header_y - 5, MARGIN + sum(COLUMN_WIDTHS), header_y - 5)

    pages = paginate(table)
    for number, page in enumerate(pages):
        if number:
            c.showPage()
        c.setFont('Helvetica', 8)
        for y, values in page:
            _draw_cells(c, y, truncate(values))

    c.setFont('Helvetica', 8)
    c.drawCentredString(width / 2, MARGIN - 10, f'Generated on {generated_at}')
    c.showPage()
    c.save()
    return buf.getvalue()

def export_report(value, area_id, fmt, user):
    if user is None or user['role'] != 'admin':
        current_app.logger.warning("Export refused for user %s", user['id'] if user else None)
        raise Forbidden()
    fmt = (fmt or '').lower()
    if fmt not in CONTENT_TYPES:
        raise UnsupportedFormat()

    day = parse_date(value)
    rows = build_projection(day, area_id)
    if not rows:
        raise EmptyExport()

    clock = current_app.config['CLOCK']
    table = export_rows(rows, clock.tz)
    if fmt == 'csv':
        data = render_csv(table)
    else:
        generated_at = format_timestamp(clock.now().isoformat(), clock.tz)
        data = render_pdf(table, day, current_app.config['CLINIC_NAME'], generated_at)
    current_app.logger.info("Exported %d checklist rows for %s as %s", len(rows), day, fmt)
    return ExportPayload(data=data, filename=f'checklist_{day.isoformat()}.{fmt}',
                         content_type=CONTENT_TYPES[fmt])
