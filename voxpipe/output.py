"""
Output functions for pasting text, clipboard, and notifications.

Uses macOS accessibility APIs and system commands. paste_text raises on
failure so the controller can report a Paste Error; notify only logs.
"""

import subprocess
import time

from .errors import VoxpipeError


class OutputError(VoxpipeError):
    """Text could not be delivered to the focused application."""


def _escape_for_applescript(text: str) -> str:
    """Escape special characters for AppleScript string."""
    # Order matters: backslash first
    text = text.replace("\\", "\\\\")
    text = text.replace('"', '\\"')
    text = text.replace("\r", "\\r")
    text = text.replace("\n", "\\n")
    text = text.replace("\t", "\\t")
    return text


def _run(args, input_text: str = None, timeout: float = 2.0) -> None:
    try:
        subprocess.run(
            args,
            input=input_text.encode("utf-8") if input_text is not None else None,
            capture_output=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired as e:
        raise OutputError(f"{args[0]} timed out") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
        raise OutputError(stderr or f"{args[0]} exited with status {e.returncode}") from e
    except OSError as e:
        raise OutputError(str(e)) from e


def copy_to_clipboard(text: str) -> None:
    """
    Copy text to the system clipboard.

    Raises:
        OutputError: pbcopy failed
    """
    if not text:
        return
    _run(["pbcopy"], input_text=text)


def paste_text(text: str) -> None:
    """
    Paste text at the current cursor position (clipboard + Cmd+V).

    Raises:
        OutputError: Clipboard or keystroke failed (usually missing
            accessibility permission)
    """
    if not text:
        return

    copy_to_clipboard(text)

    script = '''
    tell application "System Events"
        keystroke "v" using command down
    end tell
    '''
    _run(["osascript"], input_text=script)

    # Give the target app time to read the clipboard
    time.sleep(0.05)


def notify(message: str, title: str = "voxpipe") -> None:
    """
    Show a macOS notification.

    Args:
        message: Notification body
        title: Notification title
    """
    try:
        script = (
            f'display notification "{_escape_for_applescript(message)}" '
            f'with title "{_escape_for_applescript(title)}"'
        )
        _run(["osascript"], input_text=script)
    except OutputError as e:
        print(f"notify error: {e}")
