"""
Active window detection.

Uses xdotool/xprop to find the focused window's application name and title.
X11 only.
"""

from dataclasses import dataclass
import subprocess
import logging

logger = logging.getLogger(__name__)


class WindowUnavailable(Exception):
    """No focused window could be determined."""


@dataclass(frozen=True)
class ActiveWindow:
    """Application name and title of the focused window"""
    app_name: str
    title: str


def _run(args: list) -> str:
    return subprocess.check_output(
        args,
        stderr=subprocess.DEVNULL,
        timeout=1
    ).decode(errors='replace').strip()


def parse_wm_class(xprop_output: str) -> str:
    """Extract the application name from xprop WM_CLASS output.

    Output looks like: WM_CLASS(STRING) = "instance", "Class". The class
    (second value) is preferred, falling back to the instance.
    """
    if 'WM_CLASS' not in xprop_output or '=' not in xprop_output:
        return "Unknown"
    parts = xprop_output.split('=', 1)[1].strip()
    classes = [c.strip().strip('"') for c in parts.split(',')]
    if len(classes) >= 2 and classes[1]:
        return classes[1]
    if classes and classes[0]:
        return classes[0]
    return "Unknown"


def get_active_window() -> ActiveWindow:
    """Get the focused window using xdotool and xprop.

    Raises:
        WindowUnavailable: If nothing is focused or the tools fail
    """
    try:
        window_id = _run(['xdotool', 'getactivewindow'])
        if not window_id:
            raise WindowUnavailable("no focused window")

        title = _run(['xdotool', 'getwindowname', window_id])
        app_name = parse_wm_class(_run(['xprop', '-id', window_id, 'WM_CLASS']))

        return ActiveWindow(app_name=app_name, title=title)

    except subprocess.TimeoutExpired as e:
        raise WindowUnavailable(f"window query timed out: {e}") from e
    except (subprocess.CalledProcessError, FileNotFoundError, OSError) as e:
        raise WindowUnavailable(f"window query failed: {e}") from e


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    try:
        window = get_active_window()
        print(f"{window.app_name}: {window.title}")
    except WindowUnavailable as e:
        print(f"No active window: {e}")
