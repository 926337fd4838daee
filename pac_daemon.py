# pac_daemon.py

"""
PAC content provider backed by local files.
Serves the PAC script to the PAC server and polls both the script and the
user-rule file for changes so the manager can re-derive the PAC URL.

User rules (one Adblock-style pattern per line, '!' and '[' lines ignored)
are merged into the script wherever it contains the __RULES__ placeholder.
"""

import asyncio
import json
import logging
import os
from typing import Callable, List, Optional, Tuple

log = logging.getLogger("PacDaemon")

PAC_FILE_CHANGED = "PAC_FILE_CHANGED"
USER_RULE_FILE_CHANGED = "USER_RULE_FILE_CHANGED"
DEFAULT_PAC_FILE = "pac.txt"
DEFAULT_USER_RULE_FILE = "user-rule.txt"
DEFAULT_POLL_INTERVAL = 1.0
RULES_PLACEHOLDER = "__RULES__"
IGNORED_LINE_BEGINS = ("!", "[")

DEFAULT_PAC_SCRIPT = """function FindProxyForURL(url, host) {
    if (isPlainHostName(host) ||
        shExpMatch(host, "localhost") ||
        shExpMatch(host, "127.*")) {
        return "DIRECT";
    }
    return __PROXY__ + " DIRECT";
}
"""

USER_RULE_TEMPLATE = """! Put user rules line by line in this file.
! Lines starting with '!' or '[' are ignored.
"""

Stamp = Optional[Tuple[int, int]]
Listener = Callable[[str, str], None]

def _read_stamp(path: str) -> Stamp:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return (st.st_mtime_ns, st.st_size)

def parse_user_rules(text: str) -> List[str]:
    """Non-empty rule lines, comments and section headers dropped."""
    rules = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(IGNORED_LINE_BEGINS):
            continue
        rules.append(line)
    return rules

class PacDaemon:
    def __init__(
        self,
        pac_path: str = DEFAULT_PAC_FILE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        user_rule_path: Optional[str] = None
    ):
        self.pac_path = os.path.abspath(pac_path)
        if user_rule_path is None:
            user_rule_path = os.path.join(os.path.dirname(self.pac_path), DEFAULT_USER_RULE_FILE)
        self.user_rule_path = os.path.abspath(user_rule_path)
        self.poll_interval = poll_interval
        self._listeners: List[Listener] = []
        # Last seen stamps, keyed by the event each file raises
        self._stamps = {
            PAC_FILE_CHANGED: _read_stamp(self.pac_path),
            USER_RULE_FILE_CHANGED: _read_stamp(self.user_rule_path),
        }
        self._cache_stamp: Optional[Tuple[Stamp, Stamp]] = None
        self._cache: Optional[str] = None

    def _watched(self):
        return ((PAC_FILE_CHANGED, self.pac_path), (USER_RULE_FILE_CHANGED, self.user_rule_path))

    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _touch(self, path: str, template: str) -> str:
        if not os.path.exists(path):
            with open(path, "w", encoding="utf-8") as f:
                f.write(template)
            log.info(f"Created {path}")
        return path

    def touch_pac_file(self) -> str:
        """Creates the PAC file from the default script if it is missing."""
        return self._touch(self.pac_path, DEFAULT_PAC_SCRIPT)

    def touch_user_rule_file(self) -> str:
        """Creates an empty user-rule file (comment header only) if it is missing."""
        return self._touch(self.user_rule_path, USER_RULE_TEMPLATE)

    def get_user_rules(self) -> List[str]:
        if _read_stamp(self.user_rule_path) is None:
            return []
        with open(self.user_rule_path, "r", encoding="utf-8", errors="replace") as f:
            return parse_user_rules(f.read())

    def get_pac_content(self) -> str:
        """
        Current PAC script with user rules merged in. Falls back to the
        built-in default while the file does not exist. Re-reads only when
        a file stamp moves.
        """
        pac_stamp = _read_stamp(self.pac_path)
        stamp = (pac_stamp, _read_stamp(self.user_rule_path))
        if self._cache is not None and stamp == self._cache_stamp:
            return self._cache

        if pac_stamp is None:
            script = DEFAULT_PAC_SCRIPT
        else:
            with open(self.pac_path, "r", encoding="utf-8", errors="replace") as f:
                script = f.read()
        if RULES_PLACEHOLDER in script:
            script = script.replace(RULES_PLACEHOLDER, json.dumps(self.get_user_rules(), indent=2))

        self._cache, self._cache_stamp = script, stamp
        return script

    def check_for_changes(self) -> bool:
        """Compares each file stamp against the last seen one and notifies listeners."""
        changed = False
        for event, path in self._watched():
            stamp = _read_stamp(path)
            if stamp == self._stamps[event]:
                continue
            self._stamps[event] = stamp
            log.info(f"{event}: {path}")
            self._notify(event, path)
            changed = True
        return changed

    def _notify(self, event: str, path: str) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, path)
            except Exception as e: # pylint: disable=broad-exception-caught
                log.error(f"PAC change listener failed: {e}")

    async def watch(self, stop_event: asyncio.Event) -> None:
        """Polls the PAC and user-rule files until stop_event is set."""
        log.debug(f"Watching {self.pac_path} and {self.user_rule_path} every {self.poll_interval}s")
        while not stop_event.is_set():
            self.check_for_changes()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
