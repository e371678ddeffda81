class ConfigurationError(ValueError):
    """
    Raised at construction time when a setting is outside its valid range,
    e.g. a buffer capacity below 1 or a concurrency limit outside 1-8.
    """


class OrderingError(ValueError):
    """
    Raised when a negative window index is given to the bandwidth estimator.
    """


class UnexpectedStatusException(Exception):
    """
    Raised when an HTTP response returns an unexpected status code.

    Attributes:
        status (int): The HTTP status code received.
        expected (tuple[int, ...] | None): Expected status codes.
        url (str | None): Request URL.
        message (str): Human-readable error message.
    """

    def __init__(
        self,
        status: int,
        job_id: str,
        expected: tuple[int, ...] | None = None,
        url: str | None = None,
        message: str | None = None,
    ):
        self.status = status
        self.job_id = job_id
        self.expected = expected
        self.url = url

        expected_str = f", expected={expected}" if expected else ""
        url_str = f", url={url}" if url else ""
        self.message = f"Unexpected HTTP status: {job_id=}, {status}{expected_str}{url_str}"
        if message:
            self.message += f", {message=}"

        super().__init__(self.message)


class TransferFailure(Exception):
    """
    A single job's failure, attributed to its job id.

    Attributes:
        job_id (str): The job that failed.
        causes (list[str]): Messages of the exception chain, outermost first, innermost last.
    """

    def __init__(self, job_id: str, causes: list[str]):
        self.job_id = job_id
        self.causes = causes
        super().__init__(f"{job_id}: {' <- '.join(causes)}")

    @property
    def innermost(self) -> str:
        return self.causes[-1] if self.causes else ""

    @classmethod
    def from_exception(cls, job_id: str, err: BaseException) -> "TransferFailure":
        """
        Walk __cause__ / __context__ from err inwards and record every message.
        """
        causes = []
        seen = set()
        current = err
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            message = str(current)
            causes.append(f"{type(current).__name__}: {message}" if message else type(current).__name__)
            current = current.__cause__ if current.__cause__ is not None else current.__context__
        return cls(job_id, causes)
