import logging
import os
import sys
import traceback
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(level: int = logging.INFO, fmt: Optional[str] = None, log_file: Optional[str] = None) -> None:
	"""Configure root logging once. Later calls only attach a requested log file.
	If fmt is not provided, a sensible default is used.
	When log_file is given, records go to stdout and are appended to that file.
	"""
	format_str = fmt or DEFAULT_FORMAT
	root = logging.getLogger()
	if root.handlers:
		# Already configured; only attach a requested log file
		if log_file:
			_attach_file_handler(root, log_file, format_str)
		return
	handlers = [logging.StreamHandler(sys.stdout)]
	if log_file:
		handlers.append(logging.FileHandler(log_file, mode='a', encoding='utf-8'))
	logging.basicConfig(level=level, format=format_str, handlers=handlers)


def _attach_file_handler(logger: logging.Logger, log_file: str, fmt: str) -> None:
	path = os.path.abspath(log_file)
	for handler in logger.handlers:
		if isinstance(handler, logging.FileHandler) and handler.baseFilename == path:
			return
	handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
	handler.setFormatter(logging.Formatter(fmt))
	logger.addHandler(handler)


def parse_log_level(name: Optional[str], default: int = logging.INFO) -> int:
	"""Map a level name such as 'debug' to its logging constant."""
	if not name:
		return default
	level = logging.getLevelName(str(name).upper())
	return level if isinstance(level, int) else default


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module/logger by name, after ensuring logging is configured."""
	setup_logging()
	return logging.getLogger(name) if name else logging.getLogger(__name__)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
	"""Centralized exception logging with full traceback.

	Args:
		logger: Logger instance to use
		message: Custom error message to log before the traceback
		exc_info: Exception instance (if None, uses current exception context)
	"""
	logger.error(message)
	if exc_info is not None:
		logger.error(f"Exception type: {type(exc_info).__name__}")
		logger.error(f"Exception message: {str(exc_info)}")
	logger.error("Full traceback:")
	logger.error(traceback.format_exc())
