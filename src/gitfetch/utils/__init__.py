"""Utility module for gitfetch package."""

from .cli_utils import exit_with_error, handle_keyboard_interrupt, loading_spinner, show_error
from .log_setup import console, setup_logging

__all__ = [
	"console",
	"exit_with_error",
	"handle_keyboard_interrupt",
	"loading_spinner",
	"setup_logging",
	"show_error",
]
