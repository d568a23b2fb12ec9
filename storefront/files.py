"""
Чтение загруженных файлов прайса в текст.

Excel (.xlsx, .xlsm) читается через openpyxl: каждая непустая строка листа
превращается в строку вида "A;B;C", дальше работает обычный разбор
(price_parser). Остальные файлы считаются текстом: UTF-8 (с BOM или без),
при ошибке декодирования — cp1251.
"""

import io
from decimal import Decimal

from openpyxl import load_workbook

MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10MB

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ALLOWED_MIMES = {
    "text/csv",
    "text/plain",
    "text/tab-separated-values",
    "application/vnd.ms-excel",
    XLSX_MIME,
}
ALLOWED_EXTS = {"csv", "txt", "tsv", "xlsx", "xlsm"}
EXCEL_EXTS = {"xlsx", "xlsm"}


def file_ext(filename) -> str:
    name = (filename or "").lower()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1]


def is_allowed_upload(filename, content_type) -> bool:
    mime = (content_type or "").split(";")[0].strip().lower()
    return mime in ALLOWED_MIMES or file_ext(filename) in ALLOWED_EXTS


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return str(Decimal(str(value)))
    # ';' внутри ячейки сломал бы разбор строки
    return str(value).replace(";", ",").strip()


def workbook_to_text(data: bytes) -> str:
    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sheet = wb.active
        lines = []
        for row in sheet.iter_rows(values_only=True):
            cells = [_cell_text(v) for v in row]
            while cells and not cells[-1]:
                cells.pop()
            if not any(cells):
                continue
            lines.append(";".join(cells))
        return "\n".join(lines)
    finally:
        wb.close()


def decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("cp1251", errors="replace")


def read_price_file(filename, data: bytes) -> str:
    if file_ext(filename) in EXCEL_EXTS:
        return workbook_to_text(data)
    return decode_text(data)
