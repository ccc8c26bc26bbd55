from __future__ import annotations


class SiteError(Exception):
    """Base class for every failure raised by revsite."""


class ConfigError(SiteError):
    pass


class FrontMatterError(SiteError):
    path: str | None = None

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.path}: {message}" if self.path else message


class InvalidStartMarker(FrontMatterError):
    def __init__(self) -> None:
        super().__init__("invalid start marker")


class UnexpectedEof(FrontMatterError):
    def __init__(self) -> None:
        super().__init__("end of file")


class InvalidPathError(SiteError):
    pass


class IntegrityError(SiteError):
    pass


class ClassificationError(SiteError):
    def __init__(self, logical_path: str) -> None:
        self.logical_path = logical_path
        super().__init__(f"file is outside assets/, content/, static/ and templates/: {logical_path}")


class RouteConflictError(SiteError):
    def __init__(self, route: str, first: str, second: str) -> None:
        self.route = route
        super().__init__(f"route {route!r} is produced by both {first} and {second}")


class RevisionNotFound(SiteError):
    pass


class TemplateNotFound(SiteError):
    pass


class EncodingError(SiteError):
    def __init__(self, logical_path: str, what: str = "file") -> None:
        self.logical_path = logical_path
        super().__init__(f"{what} is not valid UTF-8: {logical_path}")
