"""
Module containing exceptions that can be raised during a scan.
"""


class ScanError(Exception):
    """
    Base class for all scan errors.
    """
    #: Short description of the error kind
    message = "Scan error"
    #: Unique code for the error kind
    code = None

    __seen__ = dict()

    def __init_subclass__(cls):
        # Make sure that the code has not been used for another error
        if cls.code is None:
            return
        if cls.code in ScanError.__seen__:
            message = 'code {} already in use by {}'.format(
                cls.code,
                ScanError.__seen__[cls.code].__name__
            )
            raise TypeError(message)
        ScanError.__seen__[cls.code] = cls

    def __init__(self, detail = None):
        self.detail = detail
        super().__init__(str(self))

    def __str__(self):
        if self.detail:
            return f'{self.message}: {self.detail}'
        return self.message


class ConfigurationError(ScanError):
    """
    Raised when the workload, plugin or settings are invalid.
    """
    message = "Invalid configuration"
    code = 100


class JobRunError(ScanError):
    """
    Raised when the execution backend cannot run a scan job.
    """
    message = "Scan job error"
    code = 200


class JobFailed(JobRunError):
    """
    Raised when a scan job ran to completion but failed.
    """
    message = "Scan job failed"
    code = 201

    def __init__(self, job_name, failed_tasks = (), reason = None):
        self.job_name = job_name
        self.failed_tasks = tuple(failed_tasks)
        self.reason = reason
        detail = job_name
        if self.failed_tasks:
            detail = f"{detail} (failed tasks: {', '.join(self.failed_tasks)})"
        if reason:
            detail = f'{detail}: {reason}'
        super().__init__(detail)


class JobTimeout(JobRunError, TimeoutError):
    """
    Raised when a scan job does not reach a terminal state in time.
    """
    message = "Scan job timed out"
    code = 202

    def __init__(self, job_name, timeout):
        self.job_name = job_name
        self.timeout = timeout
        super().__init__(f'{job_name} did not finish within {timeout}s')


class ContainerError(ScanError):
    """
    Base class for errors that affect a single container of the workload.
    """
    #: The pipeline stage that the error occurred in
    stage = None

    def __init__(self, detail = None, container = None):
        self.container = container
        super().__init__(detail)

    def __str__(self):
        message = super().__str__()
        if self.container:
            return f'[{self.stage}] container "{self.container}": {message}'
        return message


class LogsUnavailable(ContainerError):
    """
    Raised when the scan output for a container cannot be retrieved.
    """
    message = "Logs unavailable"
    code = 300
    stage = "logs"


class ParseError(ContainerError):
    """
    Raised when the scan output for a container cannot be parsed.
    """
    message = "Could not parse scan output"
    code = 301
    stage = "parse"


class PersistenceError(ScanError):
    """
    Raised when the report store fails to write reports.
    """
    message = "Could not persist reports"
    code = 400


class ScanIncomplete(ScanError):
    """
    Raised when one or more containers could not be scanned.
    """
    message = "Scan incomplete"
    code = 500

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__('; '.join(str(error) for error in self.errors))
