"""spreadsheet-merge — Merge spreadsheets with different columns and explore the result."""

__version__ = "0.2.0"

PAGE_SIZES: tuple[int, ...] = (10, 20, 50)

EXPORT_XLSX_NAME = "merged_data.xlsx"
EXPORT_CSV_NAME = "merged_data.csv"
SESSION_FILE_NAME = "session.json"

# Spreadsheet serial numbers strictly inside this range are read as dates
# (1970-01-01 up to the last day of year 9999).
SERIAL_DATE_MIN = 25569
SERIAL_DATE_MAX = 2958466
