"""YT Batch Uploader - scheduled batch uploads to YouTube."""

__version__ = "0.1.0"
