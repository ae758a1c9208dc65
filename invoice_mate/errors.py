from __future__ import annotations


class InvoiceMateError(RuntimeError):
    def __init__(self, message: str, code: str = "invoice_mate_error") -> None:
        super().__init__(message)
        self.code = code


class UploadRejectedError(InvoiceMateError):
    def __init__(self, message: str, code: str = "upload_rejected") -> None:
        super().__init__(message, code=code)


class ExtractionError(InvoiceMateError):
    def __init__(self, message: str, code: str = "extraction_failed") -> None:
        super().__init__(message, code=code)


class NormalizationError(InvoiceMateError):
    def __init__(self, message: str, field: str, code: str = "coercion_failed") -> None:
        super().__init__(message, code=code)
        self.field = field


class ExportError(InvoiceMateError):
    def __init__(self, message: str, code: str = "export_failed") -> None:
        super().__init__(message, code=code)
