"""Error definitions for the BucketBird object core."""


class BucketBirdError(Exception):
    """An error with a machine-readable code, message, and HTTP status.

    Attributes:
        code: Short error code string (e.g. "NotFound", "InvalidArgument").
        message: Human-readable error description.
        http_status: The HTTP status code the API layer should return.
        extra_fields: Additional key-value pairs included in the JSON error body.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra_fields = extra_fields or {}


# -- Common pre-defined errors ------------------------------------------------


class NotFound(BucketBirdError):
    """The bucket or key does not exist. Never retried."""

    def __init__(self, bucket: str = "", key: str = "") -> None:
        extra: dict[str, str] = {}
        if bucket:
            extra["bucket"] = bucket
        if key:
            extra["key"] = key
        what = "key" if key else "bucket"
        super().__init__(
            code="NotFound",
            message=f"The specified {what} does not exist.",
            http_status=404,
            extra_fields=extra,
        )
        self.bucket = bucket
        self.key = key


class InvalidArgument(BucketBirdError):
    """An invalid argument was provided."""

    def __init__(self, message: str = "Invalid Argument") -> None:
        super().__init__(code="InvalidArgument", message=message, http_status=400)


class StoreTransportError(BucketBirdError):
    """A network or protocol failure from the underlying object store.

    Safe to retry at the caller's discretion; the core never retries.

    Attributes:
        store_code: The error code reported by the store, if any.
    """

    def __init__(self, message: str = "Object store request failed", store_code: str = "") -> None:
        super().__init__(
            code="StoreTransportError",
            message=message,
            http_status=502,
            extra_fields={"storeCode": store_code} if store_code else {},
        )
        self.store_code = store_code


class UnsafeArchivePath(BucketBirdError):
    """An object's relative path would escape the archive root."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            code="UnsafeArchivePath",
            message="The object path escapes the archive root.",
            http_status=400,
            extra_fields={"key": key} if key else {},
        )
        self.key = key


class UnsupportedMethod(InvalidArgument):
    """A presign request named a method other than GET or PUT."""

    def __init__(self, method: str = "") -> None:
        super().__init__(f"unsupported method {method}")
