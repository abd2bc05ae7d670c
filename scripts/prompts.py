"""
Plain terminal prompts used to collect the install configuration.

All prompts take an input_fn so they can be driven by scripted answers.
"""

from typing import Callable, Optional, Sequence

from host_commands import SetupAborted

InputFn = Callable[[str], str]


def ask(message: str, default: Optional[str] = None, input_fn: InputFn = input) -> str:
    """Free-text prompt. Empty answer returns default (or '')."""
    suffix = f" [{default}]" if default else ''
    try:
        answer = input_fn(f"{message}{suffix}: ").strip()
    except (EOFError, KeyboardInterrupt):
        raise SetupAborted('Input aborted.', exit_code=1)
    return answer or (default or '')


def choose(title: str, options: Sequence[tuple[str, str]], input_fn: InputFn = input,
           allow_exit: bool = True) -> str:
    """Numbered menu. Returns the key of the chosen option.

    Option 0 exits gracefully.

    Raises:
        SetupAborted: exit_code 0 when 0 is chosen, 1 on EOF/Ctrl-C
    """
    print()
    print(title)
    print('-' * len(title))
    for i, (_, label) in enumerate(options, start=1):
        print(f"  {i}. {label}")
    if allow_exit:
        print("  0. Return or Exit")
    print()

    valid = [str(i) for i in range(0 if allow_exit else 1, len(options) + 1)]
    while True:
        try:
            answer = input_fn(f"Enter your choice ({', '.join(valid)}): ").strip()
        except (EOFError, KeyboardInterrupt):
            raise SetupAborted('Input aborted.', exit_code=1)
        if answer in valid:
            break
        print(f"Invalid input. Please enter a valid choice ({', '.join(valid)}).")

    if answer == '0':
        raise SetupAborted('Exiting...', exit_code=0)
    return options[int(answer) - 1][0]


def confirm(message: str, input_fn: InputFn = input, default: Optional[bool] = None) -> bool:
    """y/n prompt, re-asked until answered."""
    hint = {True: 'Y/n', False: 'y/N', None: 'y/n'}[default]
    while True:
        try:
            answer = input_fn(f"{message} ({hint}): ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            raise SetupAborted('Input aborted.', exit_code=1)
        if not answer and default is not None:
            return default
        if answer in ('y', 'yes'):
            return True
        if answer in ('n', 'no'):
            return False
        print("Invalid input. Please enter 'y' or 'n'.")


def require_confirmation(message: str, input_fn: InputFn = input) -> None:
    """Abort with exit code 1 unless the operator confirms."""
    if not confirm(message, input_fn=input_fn):
        raise SetupAborted('Exiting script now.', exit_code=1)
