import pandas as pd
import pytest

from callsheet_reconciler.ingestion.loaders import UnsupportedFileTypeError, read_sheet, read_sheet_bytes


@pytest.fixture()
def sample_dataframe():
    return pd.DataFrame(
        [
            {
                "Name of the Company": "Acme Trading",
                "Contact Number": "0501234567",
                "Industry": "Trading",
                "Address": "Street 1",
                "Area": "Deira",
                "Emirate": "Dubai",
            },
            {
                "Name of the Company": "",
                "Contact Number": "",
                "Industry": "",
                "Address": "",
                "Area": "",
                "Emirate": "",
            },
            {
                "Name of the Company": "Beta",
                "Contact Number": "00971507654321",
                "Industry": "",
                "Address": "Street 2",
                "Area": "Karama",
                "Emirate": "Dubai",
            },
        ]
    )


def test_read_sheet_from_csv_keeps_text_and_drops_blank_rows(sample_dataframe, tmp_path):
    csv_path = tmp_path / "calls.csv"
    sample_dataframe.to_csv(csv_path, index=False)

    sheet = read_sheet(csv_path)

    assert sheet.headers == list(sample_dataframe.columns)
    assert len(sheet.rows) == 2
    assert sheet.rows[0].cells[1] == "0501234567"
    assert sheet.rows[1].cells[2] == ""
    assert [row.row_number for row in sheet.rows] == [2, 3]
    assert sheet.file_name == "calls.csv"
    assert sheet.file_size == csv_path.stat().st_size


def test_read_sheet_from_excel_reads_first_sheet(sample_dataframe, tmp_path):
    excel_path = tmp_path / "calls.xlsx"
    with pd.ExcelWriter(excel_path, engine="openpyxl") as writer:
        sample_dataframe.to_excel(writer, sheet_name="Calls", index=False)
        pd.DataFrame([{"ignored": "x"}]).to_excel(writer, sheet_name="Notes", index=False)

    sheet = read_sheet(excel_path)

    assert sheet.headers[0] == "Name of the Company"
    assert [row.cells[0] for row in sheet.rows] == ["Acme Trading", "Beta"]
    assert sheet.rows[0].cells[1] == "0501234567"


def test_unnamed_headers_become_empty(tmp_path):
    csv_path = tmp_path / "calls.csv"
    csv_path.write_text("Company,,Phone\nAcme,x,0501234567\n", encoding="utf-8")

    sheet = read_sheet(csv_path)

    assert sheet.headers == ["Company", "", "Phone"]


def test_read_sheet_bytes_uses_the_file_name_for_format():
    data = b"Company,Phone\nAcme,0501234567\n"

    sheet = read_sheet_bytes(data, "upload.csv")

    assert sheet.file_name == "upload.csv"
    assert sheet.file_size == len(data)
    assert sheet.rows[0].cells == ["Acme", "0501234567"]


def test_unsupported_file_extension(tmp_path):
    bad_path = tmp_path / "calls.json"
    bad_path.write_text("{}", encoding="utf-8")

    with pytest.raises(UnsupportedFileTypeError):
        read_sheet(bad_path)
