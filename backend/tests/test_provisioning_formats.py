"""
Format detection and per-format parsing.

Scenarios
- The same three users encoded as xlsx, csv, json and pdf text produce the
  same normalized requests in the same order.
- Unknown extensions raise UnsupportedFormat; broken containers raise
  MalformedPayload; an empty file raises NoValidRecords.
"""
from __future__ import annotations

import io
import json
import zipfile

import openpyxl
import pytest

from identity_access.errors import MalformedPayload, NoValidRecords, UnsupportedFormat
from provisioning import parsers
from provisioning.parsers import extension_of, parse_upload, parser_for
from provisioning.records import CreationRequest
from provisioning.service import preview_upload

HEADER = ["name", "user_id", "roll_number", "password", "role"]
ROWS = [
    ["Jane Doe", "jdoe01", "R001", "pass123", "student"],
    ["Raj Kumar", "rkumar", "R002", "pw2", "faculty"],
    ["Li Wei", "lwei", "R003", "pw3", "Student"],
]


def _xlsx_bytes(rows) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _csv_bytes(rows) -> bytes:
    return "\n".join(",".join(str(c) for c in row) for row in rows).encode("utf-8")


def _json_bytes(rows) -> bytes:
    return json.dumps([dict(zip(HEADER, row)) for row in rows[1:]]).encode("utf-8")


def _pdf_pages(rows) -> list[str]:
    return ["\n".join("     ".join(row) for row in rows)]


def _summary(items):
    return [(i.user_id, i.roll_number, i.role) for i in items if isinstance(i, CreationRequest)]


def test_same_users_in_every_format_normalize_identically(monkeypatch: pytest.MonkeyPatch):
    table = [HEADER] + ROWS
    monkeypatch.setattr(parsers, "extract_pdf_text", lambda data: _pdf_pages(table))

    expected = [("jdoe01", "R001", "student"), ("rkumar", "R002", "faculty"), ("lwei", "R003", "student")]
    for ext, data in (
        ("xlsx", _xlsx_bytes(table)),
        ("csv", _csv_bytes(table)),
        ("json", _json_bytes(table)),
        ("pdf", b"%PDF-fake"),
    ):
        assert _summary(preview_upload(data, ext)) == expected, ext


def test_parser_for_accepts_dot_and_case():
    assert parser_for(".XLSX").extension == "xlsx"
    assert parser_for("csv").extension == "csv"


@pytest.mark.parametrize("ext", ["txt", "", None, "docx"])
def test_unsupported_extension_raises(ext):
    with pytest.raises(UnsupportedFormat):
        parser_for(ext)


def test_extension_of_filename():
    assert extension_of("Roster.Final.XLSX") == "xlsx"
    assert extension_of("noext") == ""


def test_spreadsheet_skips_empty_rows_and_omits_empty_cells():
    table = [HEADER + ["batch"], ROWS[0] + ["n"], [None, None, None, None, None, None], ["Raj", "rk", "R9", "pw", "faculty", None]]
    records = list(parse_upload(_xlsx_bytes(table), "xlsx"))

    assert [r.position for r in records] == [2, 4]
    assert records[0].fields["batch"] == "n"
    assert "batch" not in records[1].fields


def test_numeric_spreadsheet_cells_become_integer_strings():
    table = [HEADER, ["Num Ber", 5001, 1001.0, "pw", "student"]]
    items = preview_upload(_xlsx_bytes(table), "xlsx")

    assert items[0].user_id == "5001"
    assert items[0].roll_number == "1001"


def test_json_object_with_users_array():
    payload = json.dumps({"users": [dict(zip(HEADER, ROWS[0]))]}).encode()
    records = list(parse_upload(payload, "json"))

    assert records[0].fields["user_id"] == "jdoe01"
    assert records[0].position == 1


@pytest.mark.parametrize(
    "payload",
    [b"{not json", b'{"people": []}', b'"just a string"', b"[1, 2]", b"\xff\xfe\x00"],
)
def test_json_other_shapes_are_malformed(payload):
    with pytest.raises(MalformedPayload):
        list(parse_upload(payload, "json"))


def test_broken_xlsx_is_malformed():
    with pytest.raises(MalformedPayload):
        list(parse_upload(b"not a zip archive", "xlsx"))


def _truncate_sheet(data: bytes) -> bytes:
    src = zipfile.ZipFile(io.BytesIO(data))
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w") as dst:
        for item in src.infolist():
            content = src.read(item.filename)
            if item.filename == "xl/worksheets/sheet1.xml":
                content = content[: len(content) // 2]
            dst.writestr(item, content)
    return out.getvalue()


def test_xlsx_with_truncated_sheet_is_malformed():
    data = _truncate_sheet(_xlsx_bytes([HEADER] + ROWS))

    with pytest.raises(MalformedPayload):
        preview_upload(data, "xlsx")


def test_broken_xls_is_malformed():
    with pytest.raises(MalformedPayload):
        list(parse_upload(b"not an ole2 compound document", "xls"))


def test_undecodable_csv_is_malformed():
    with pytest.raises(MalformedPayload):
        list(parse_upload(b"name,user_id\n\xff\xfe\xfa,x", "csv"))


def test_broken_pdf_is_malformed():
    with pytest.raises(MalformedPayload):
        list(parse_upload(b"definitely not a pdf", "pdf"))


def test_header_only_csv_has_no_valid_records():
    with pytest.raises(NoValidRecords):
        preview_upload(_csv_bytes([HEADER]), "csv")


def test_parse_is_restartable():
    parser = parser_for("csv")
    data = _csv_bytes([HEADER] + ROWS)

    first = [r.fields["user_id"] for r in parser.parse(data)]
    second = [r.fields["user_id"] for r in parser.parse(data)]

    assert first == second == ["jdoe01", "rkumar", "lwei"]
