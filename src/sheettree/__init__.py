"""sheettree -- a folder tree for workbook sheets, kept in sync with the host."""

__version__ = "0.3.0"
