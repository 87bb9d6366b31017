"""Tests for the error taxonomy and SAS-redacting logging."""

from __future__ import annotations

import io
import logging

import pytest

from azure_venv.core.errors import (
    AuthenticationError,
    AzureConnectionError,
    AzureVenvError,
    BlobNotFoundError,
    ConfigurationError,
    ErrorKind,
    PathTraversalError,
    SyncError,
)
from azure_venv.core.log import (
    REDACTED,
    AzureVenvFormatter,
    SasRedactingFilter,
    configure_logging,
    sanitize,
)
from azure_venv.core.types import LogLevel


class TestErrorKinds:
    """Tests for the closed error kind on each exception."""

    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (ConfigurationError("bad", "AZURE_VENV"), ErrorKind.CONFIGURATION),
            (PathTraversalError("bad", "../x"), ErrorKind.TRAVERSAL),
            (SyncError("bad"), ErrorKind.SYNC),
            (AzureConnectionError("bad", 500), ErrorKind.CONNECTIVITY),
            (AuthenticationError("bad"), ErrorKind.AUTH),
            (BlobNotFoundError("bad", "a.txt"), ErrorKind.NOT_FOUND),
        ],
    )
    def test_kind(self, error: AzureVenvError, kind: ErrorKind) -> None:
        """Should carry its kind and message."""
        assert error.kind is kind
        assert error.message == "bad"
        assert isinstance(error, AzureVenvError)

    def test_structured_fields(self) -> None:
        """Should expose structured fields."""
        assert ConfigurationError("m", "X").parameter == "X"
        assert PathTraversalError("m", "../x").blob_name == "../x"
        assert AzureConnectionError("m", 503).status_code == 503
        assert AzureConnectionError("m").status_code is None
        assert BlobNotFoundError("m", "a").blob_name == "a"
        assert AuthenticationError("m").expiry_date is None


class TestSanitize:
    """Tests for sanitize."""

    def test_exact_token_redacted(self) -> None:
        """Should replace the full token."""
        token = "sv=1&sig=abc"
        assert sanitize(f"url?{token}", token) == f"url?{REDACTED}"

    def test_sig_and_se_redacted(self) -> None:
        """Should redact sig= and se= values even without the token."""
        text = "https://a/b?sv=1&se=2030-01-01&sig=xyz%3D done"
        result = sanitize(text, "")
        assert "xyz" not in result
        assert "2030-01-01" not in result
        assert f"sig={REDACTED}" in result
        assert f"se={REDACTED}" in result
        assert result.endswith(" done")


class TestLoggingSetup:
    """Tests for the formatter, filter and configure_logging."""

    def _record(self, msg: str, *args: object, level: int = logging.INFO) -> logging.LogRecord:
        return logging.LogRecord("azure_venv.test", level, __file__, 1, msg, args, None)

    def test_formatter_layout(self) -> None:
        """Should prefix with the tool name, level and timestamp."""
        line = AzureVenvFormatter().format(self._record("hello", level=logging.WARNING))
        assert line.startswith("[azure-venv] [WARN] [")
        assert line.endswith("] hello")

    def test_filter_redacts_args(self) -> None:
        """Should redact secrets passed as format arguments."""
        record = self._record("GET %s", "https://a/c?sig=secret")
        assert SasRedactingFilter("").filter(record) is True
        assert "secret" not in record.getMessage()

    def test_configure_logging_redacts(self) -> None:
        """Should install a handler that never prints the token."""
        token = "sv=1&sig=topsecret"
        logger = configure_logging(LogLevel.DEBUG, token)
        handler = next(h for h in logger.handlers if getattr(h, "_azure_venv", False))
        stream = io.StringIO()
        handler.setStream(stream)  # type: ignore[attr-defined]

        logging.getLogger("azure_venv.sync").debug("token is %s", token)

        assert "topsecret" not in stream.getvalue()
        assert REDACTED in stream.getvalue()

    def test_configure_logging_replaces_handler(self) -> None:
        """Should keep a single handler across repeated calls."""
        configure_logging(LogLevel.INFO)
        logger = configure_logging(LogLevel.ERROR)
        ours = [h for h in logger.handlers if getattr(h, "_azure_venv", False)]
        assert len(ours) == 1
        assert logger.level == logging.ERROR
