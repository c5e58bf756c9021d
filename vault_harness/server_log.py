# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Routes vault server output into the logging system.

Every line the server prints is logged on a per-port child of the
"vault_server" logger, at the level vault itself reports.
"""

import logging
import re
from typing import Iterable

# Parent logger for all server output
SERVER_LOGGER_NAME = "vault_server"

REDACTED = "<redacted>"

_VAULT_LEVELS = {
    "TRACE": logging.DEBUG,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

_LEVEL_MARKER = re.compile(r"\[(TRACE|DEBUG|INFO|WARN|WARNING|ERROR)\]")

# 2024-05-01T10:00:00.123Z [INFO]  core: security barrier not initialized
_VAULT_LINE = re.compile(
    r"^\S+T(\d{2}:\d{2}:\d{2}(?:\.\d{3})?)\S*\s+\[\w+\]\s+(?:([\w.\-]+):\s+)?(.*)$"
)


def server_logger(port: int) -> logging.Logger:
    """Logger that receives the output of the server on port."""
    return logging.getLogger(f"{SERVER_LOGGER_NAME}.{port}")


class ServerLogSink:
    """Line-oriented sink for server stdout/stderr.

    Secrets (the root token) are replaced before anything is logged.
    """

    def __init__(self, logger: logging.Logger, secrets: Iterable[str] = ()):
        self._logger = logger
        self._secrets = [s for s in secrets if s]

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def write_line(self, line: str) -> None:
        line = line.rstrip("\r\n")
        if not line.strip():
            return

        line = self.redact(line)
        match = _LEVEL_MARKER.search(line)
        level = _VAULT_LEVELS[match.group(1)] if match else logging.INFO
        self._logger.log(level, "%s", line)


class ServerLogFormatter(logging.Formatter):
    """Compact, colored formatter for vault server output.

    Input line from vault:
      2024-05-01T10:00:00.123Z [INFO]  core: post-unseal setup complete

    Output:
      [vault:8200] 10:00:00.123 core         | post-unseal setup complete
    """

    CYAN = "\033[36m"
    YELLOW = "\033[33m"
    RED = "\033[31m"
    DIM = "\033[2m"
    RESET = "\033[0m"

    LEVEL_COLORS = {
        logging.DEBUG: DIM,
        logging.INFO: "",
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        level_color = self.LEVEL_COLORS.get(record.levelno, "")
        port = record.name.rsplit(".", 1)[-1]
        prefix = f"{self.CYAN}[vault:{port}]{self.RESET}"

        match = _VAULT_LINE.match(msg)
        if not match:
            # Banner lines and anything else vault prints unstructured
            return f"{prefix} {level_color}{msg}{self.RESET}"

        timestamp, module, message = match.groups()
        ts = f"{self.DIM}{timestamp}{self.RESET}"
        mod = f"{self.DIM}{module:12}{self.RESET}" if module else " " * 12
        return f"{prefix} {ts} {mod} | {level_color}{message}{self.RESET}"
