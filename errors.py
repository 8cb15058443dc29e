"""Exceptions shared across the certificate studio modules."""


class CertStudioError(Exception):
    """Base error for the application."""


class ConfigError(CertStudioError):
    """Invalid or missing configuration."""


class ParseError(CertStudioError):
    """Uploaded spreadsheet is not a recognisable workbook."""


class PersistenceError(CertStudioError):
    """Transport or auth failure talking to the template store."""


class NotFoundError(CertStudioError):
    """Template missing or not owned by the caller."""


class ExportError(CertStudioError):
    """Rasterization or encoding of a certificate failed."""


class AuthError(CertStudioError):
    """Identity token could not be validated."""
