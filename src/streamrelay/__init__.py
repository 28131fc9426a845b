"""streamrelay - stream incoming uploads into S3 multipart uploads."""

__version__ = "0.1.0"
