import json
import logging
import os
import subprocess
import uuid
import click
import datetime

from typing import Any, List, Optional, Sequence

PACKAGE_DIR = os.path.dirname(os.path.realpath(__file__))
"""Absolute path to the gcflab package directory."""


def package_absolute_path(*paths: str) -> str:
    """
    Construct an absolute path relative to the gcflab package directory.

    :param paths: Variable number of path components to join with the package root.
    :return: Absolute path string.
    """
    return os.path.join(PACKAGE_DIR, *paths)


class JSONSerializer(json.JSONEncoder):
    """
    JSON encoder for gcflab objects.

    Handles objects that have a `serialize()` method and falls back to
    `vars()` or `str()` for everything else.
    """

    def default(self, o: Any) -> Any:
        if hasattr(o, "serialize"):
            return o.serialize()
        try:
            return vars(o)
        except TypeError:
            return str(o)


def serialize(obj: Any) -> str:
    """
    Serialize an object to a pretty-printed JSON string.

    :param obj: The object to serialize.
    :return: A JSON string representation of the object, indented by 2.
    """
    if hasattr(obj, "serialize"):
        return json.dumps(obj.serialize(), sort_keys=True, indent=2)
    else:
        return json.dumps(obj, cls=JSONSerializer, sort_keys=True, indent=2)


def execute(
    cmd: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[dict] = None,
    timeout: Optional[float] = None,
    merge_stderr: bool = True,
) -> str:
    """
    Execute a command given as a list of arguments.

    Captures the output, raising a RuntimeError if the command fails,
    cannot be started or does not finish within `timeout`.

    :param cmd: The command and its arguments.
    :param cwd: Optional working directory for the command.
    :param env: Optional environment for the command; inherits ours when None.
    :param timeout: Optional number of seconds after which the command is killed.
    :param merge_stderr: If True, stderr is returned together with stdout.
                         Otherwise it only appears in the error message.
    :return: The decoded output of the command.
    :raises RuntimeError: If the command returns a non-zero exit code.
    """
    printable = " ".join(cmd)
    try:
        process_result = subprocess.run(
            list(cmd),
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise RuntimeError(f"Running command '{printable}' failed: {cmd[0]} not found!")
    except subprocess.TimeoutExpired:
        raise RuntimeError(f"Running command '{printable}' timed out after {timeout} seconds!")
    stdout = process_result.stdout.decode("utf-8", errors="replace")
    if process_result.returncode != 0:
        if not merge_stderr:
            stdout += process_result.stderr.decode("utf-8", errors="replace")
        raise RuntimeError(
            f"Running command '{printable}' failed with exit code {process_result.returncode}!\n"
            f"Output: {stdout}"
        )
    return stdout


def update_nested_dict(cfg: dict, keys: List[str], value: Optional[Any]):
    """
    Update a value in a nested dictionary at a path specified by `keys`.

    If `value` is None, nothing is changed, so that unset CLI options
    do not override values from the JSON configuration.

    :param cfg: The dictionary to update.
    :param keys: A list of strings representing the path to the value.
    :param value: The new value to set.
    """
    if value is not None:
        current_level = cfg
        for key_part in keys[:-1]:
            current_level = current_level.setdefault(key_part, {})
        current_level[keys[-1]] = value


def configure_logging():
    """
    Mute verbose logging from the libraries we call into.
    """
    noisy_loggers = ["urllib3", "docker"]
    for logger_name_prefix in noisy_loggers:
        for name in list(logging.root.manager.loggerDict):
            if name.startswith(logger_name_prefix):
                logging.getLogger(name).setLevel(logging.ERROR)


LOG_FORMAT = "%(asctime)s,%(msecs)d %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"


def global_logging():
    """
    Set up the basic global logging configuration of the application.
    """
    logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, level=logging.INFO)


class ColoredWrapper:
    """
    A wrapper around a standard Python logger printing colored console output with Click.

    Messages can also be propagated to the underlying logger, e.g., to
    land in the output log file.
    """

    SUCCESS = "\033[92m"
    STATUS = "\033[94m"
    WARNING = "\033[93m"
    ERROR = "\033[91m"
    BOLD = "\033[1m"
    END = "\033[0m"

    def __init__(
        self, prefix: str, logger: logging.Logger, verbose: bool = True, propagate: bool = False
    ):
        """
        :param prefix: A prefix string to prepend to log messages (e.g., class name).
        :param logger: The underlying `logging.Logger` instance.
        :param verbose: If True, DEBUG messages are printed to console.
        :param propagate: If True, messages are also passed to the underlying logger's handlers.
        """
        self.verbose = verbose
        self.propagate = propagate
        self.prefix = prefix
        self._logging = logger

    def debug(self, message: str):
        self._emit(logging.DEBUG, ColoredWrapper.STATUS, message, echo=self.verbose)

    def info(self, message: str):
        self._emit(logging.INFO, ColoredWrapper.SUCCESS, message)

    def warning(self, message: str):
        self._emit(logging.WARNING, ColoredWrapper.WARNING, message)

    def error(self, message: str):
        self._emit(logging.ERROR, ColoredWrapper.ERROR, message)

    def critical(self, message: str):
        self._emit(logging.CRITICAL, ColoredWrapper.ERROR, message)

    def _emit(self, level: int, color: str, message: str, echo: bool = True):
        if echo:
            timestamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
            bold, end = ColoredWrapper.BOLD, ColoredWrapper.END
            click.echo(f"{color}{bold}[{timestamp}]{end} {bold}{self.prefix}{end} {message}")
        if self.propagate:
            self._logging.log(level, message)


class LoggingHandlers:
    """
    Handlers shared by all components of one run: the console verbosity and
    the log file, usually `out.log` in the output directory.

    Attributes:
        verbosity: Print DEBUG messages on the console.
        handler: File handler, or None when the run is not logged to a file.
    """

    def __init__(self, verbose: bool = False, filename: Optional[str] = None):
        self.verbosity = verbose
        self.handler: Optional[logging.FileHandler] = None
        if filename:
            self.handler = logging.FileHandler(filename=filename, mode="w")
            self.handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
            self.handler.setLevel(logging.DEBUG if verbose else logging.INFO)


class LoggingBase:
    """
    Base class providing standardized logging for gcflab components.

    Initializes a logger with a unique name (type name + UUID4 prefix) and
    a `ColoredWrapper` for console output. Attaching `LoggingHandlers`
    enables file logging.
    """

    def __init__(self):
        uuid_prefix = str(uuid.uuid4())[0:4]
        class_name = getattr(self, "typename", lambda: self.__class__.__name__)()
        self.log_name = f"{class_name}-{uuid_prefix}"

        self._logging = logging.getLogger(self.log_name)
        self._logging.setLevel(logging.DEBUG)

        self.wrapper = ColoredWrapper(self.log_name, self._logging)
        self._logging_handlers: Optional[LoggingHandlers] = None

    @property
    def logging(self) -> ColoredWrapper:
        return self.wrapper

    @property
    def logging_handlers(self) -> Optional[LoggingHandlers]:
        return self._logging_handlers

    @logging_handlers.setter
    def logging_handlers(self, handlers: Optional[LoggingHandlers]):
        """
        Set the `LoggingHandlers` for this logger.

        Installs the file handler of `handlers` (if any) on the underlying logger
        and updates the verbosity and propagation of the `ColoredWrapper`.

        :param handlers: The LoggingHandlers instance, or None to clear handlers.
        """
        if self._logging_handlers and self._logging_handlers.handler:
            if not handlers or self._logging_handlers.handler != handlers.handler:
                self._logging.removeHandler(self._logging_handlers.handler)

        self._logging_handlers = handlers

        if handlers:
            self.wrapper = ColoredWrapper(
                self.log_name,
                self._logging,
                verbose=handlers.verbosity,
                propagate=handlers.handler is not None,
            )
            if handlers.handler:
                self._logging.addHandler(handlers.handler)
            # Console output goes through ColoredWrapper only.
            self._logging.propagate = False
        else:
            self.wrapper = ColoredWrapper(self.log_name, self._logging)
            self._logging.propagate = True


def catch_interrupt():
    """
    Set up a signal handler to catch KeyboardInterrupt (Ctrl+C) and print a stack trace
    before exiting. Useful for finding where a long deployment hangs.
    """
    import signal
    import sys
    import traceback

    def custom_interrupt_handler(signum, frame):
        print("\nKeyboardInterrupt caught!")
        traceback.print_stack(frame)
        sys.exit(1)

    signal.signal(signal.SIGINT, custom_interrupt_handler)
