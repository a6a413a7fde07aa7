"""
Interactive terminal prompts.
"""

import getpass
import sys


def prompt_yes_no(question: str) -> bool:
    """Asks a yes/no question on the terminal. Only 'y' and 'yes' count as yes; EOF counts as no."""
    try:
        answer = input(f'{question} (y/n): ')
    except EOFError:
        return False
    return answer.strip().lower() in ('y', 'yes')


def prompt_password(prompt: str = 'Please enter your Varvis password: ') -> str:
    return getpass.getpass(prompt)


def is_interactive() -> bool:
    return sys.stdin.isatty()
