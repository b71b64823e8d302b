"""Operator-facing text helpers shared by the installer and the menu."""

from __future__ import annotations


def _print(msg: str = "") -> None:
    print(msg, flush=True)


def _input(prompt: str) -> str:
    return input(prompt).strip()


def is_confirmed(answer: str | None, token: str = "YES") -> bool:
    """True only for the exact confirmation token (surrounding blanks ignored, case kept)."""
    if answer is None:
        return False
    return answer.strip() == token


def confirm(prompt: str, token: str = "YES") -> bool:
    """Ask the operator to type *token*; anything else declines."""
    try:
        answer = _input(f"{prompt} Type {token} to continue: ")
    except EOFError:
        return False
    return is_confirmed(answer, token)


def format_bytes(num: int | float | None) -> str:
    if num is None:
        return "?"
    size = float(num)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
