"""Clock health, observation-time authority, EXIF stamping, FTPS upload and update checks for weather camera bridges."""

__version__ = "0.1.0"