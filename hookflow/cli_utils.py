"""
Common CLI utilities and decorators for consistent command behavior.
"""

import json
import sys
from functools import wraps

import click

from .config import console, logger
from .exit_codes import INTERRUPTED, get_exit_code_for_exception, CommandError


def handle_errors(func):
    """
    Decorator that turns exceptions raised by a command into a
    rich-formatted message and an exit code.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            console.print("[yellow]Interrupted by user[/yellow]")
            sys.exit(INTERRUPTED)
        except (click.ClickException, click.exceptions.Exit, click.Abort):
            raise
        except CommandError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(e.exit_code)
        except Exception as e:
            logger.debug("Command failed", exc_info=True)
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(get_exit_code_for_exception(e))

    return wrapper


def parse_key_values(items):
    """
    Parse ``key=value`` pairs from repeated CLI options into a dict.

    Values that look like JSON scalars (numbers, true/false/null) are decoded.
    """
    result = {}
    for item in items:
        if '=' not in item:
            raise click.BadParameter(f"Expected key=value, got '{item}'")
        key, value = item.split('=', 1)
        try:
            decoded = json.loads(value)
        except ValueError:
            decoded = value
        result[key.strip()] = decoded
    return result
