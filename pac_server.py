# pac_server.py
"""
PAC Server -- Local Proxy Auto-Config Endpoint.

ARCHITECTURE:
- UI: PromptToolkit Interactive Shell (optional, --no-shell serves headless).
- SERVER: Delegates to 'pac_manager.py' (lifecycle) and 'pac_core.py' (wire).
- CONTENT: Delegates to 'pac_daemon.py' (PAC file + change polling).
- CHECK: 'httpx' self-fetch of the published PAC URL.
"""

import sys
import asyncio
import argparse
import logging
import traceback
from typing import List, Optional

import httpx
from colorama import Fore, Style, init as colorama_init
from prompt_toolkit import PromptSession, print_formatted_text
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.formatted_text import ANSI
from prompt_toolkit.completion import WordCompleter

if sys.platform != "win32":
    import uvloop
else:
    uvloop = None

from pac_common import PacServerError, SERVER_NAME, DEFAULT_PROXY_PORT, RESOURCE_NAME
from pac_daemon import PacDaemon, DEFAULT_PAC_FILE
from pac_manager import PacServer
from structures import ServerConfig

# Global Configuration
CHECK_TIMEOUT = 5.0
COMMANDS = ['url', 'status', 'secure', 'touch', 'rules', 'check', 'help', 'exit', 'quit', 'q']

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# 1. Arguments
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PAC Server - local proxy auto-config endpoint")
    parser.add_argument("-f", "--pac-file", default=DEFAULT_PAC_FILE, help=f"PAC script file (default: {DEFAULT_PAC_FILE})")
    parser.add_argument("-u", "--user-rule-file", default=None, help="User rule file merged into __RULES__ (default: user-rule.txt beside the PAC file)")
    parser.add_argument("-p", "--port", type=int, default=None, help="Fixed PAC port (default: pick a free port)")
    parser.add_argument("--proxy-port", type=int, default=DEFAULT_PROXY_PORT, help=f"Downstream proxy port (default: {DEFAULT_PROXY_PORT})")
    parser.add_argument("--host", default=None, help="Host written into the PAC URL")
    parser.add_argument("--resource", default=RESOURCE_NAME, help=f"Served resource name (default: {RESOURCE_NAME})")
    parser.add_argument("--share", action="store_true", help="Listen on all interfaces (share over LAN)")
    parser.add_argument("--ipv6", action="store_true", help="Use IPv6")
    parser.add_argument("--no-secret", action="store_true", help="Serve the PAC without a secret token")
    parser.add_argument("--socks", action="store_true", help="Steer clients to SOCKS5 instead of PROXY")
    parser.add_argument("--no-shell", action="store_true", help="Serve until interrupted, no interactive shell")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser

def config_from_args(args: argparse.Namespace) -> ServerConfig:
    return ServerConfig(
        share_over_lan=args.share,
        ipv6=args.ipv6,
        secure_local_pac=not args.no_secret,
        proxy_port=args.proxy_port,
        pac_port=args.port,
        local_host=args.host,
        use_socks=args.socks,
        resource_name=args.resource,
    )

async def fetch_pac(url: str, timeout: float = CHECK_TIMEOUT) -> httpx.Response:
    """Fetches the PAC URL the way a browser would."""
    async with httpx.AsyncClient(timeout=timeout, trust_env=False) as client:
        return await client.get(url)

# -----------------------------------------------------------------------------
# 2. Interactive UI Application
# -----------------------------------------------------------------------------

class PacApp:
    """Main application class handling the UI and orchestration."""
    def __init__(
        self,
        config: ServerConfig,
        pac_file: str = DEFAULT_PAC_FILE,
        interactive: bool = True,
        user_rule_file: Optional[str] = None
    ):
        self.config = config
        self.interactive = interactive
        self.daemon = PacDaemon(pac_file, user_rule_path=user_rule_file)
        self.server = PacServer(self.daemon, external_callback=self._handler)
        self.stop_event = asyncio.Event()

    def _handler(self, level: str, data: object) -> None:
        """Callback hooked into PacServer."""
        if level == "PAC_URL" and self.server.is_running:
            print_formatted_text(ANSI(f"{Fore.GREEN}[PAC] {data}{Style.RESET_ALL}"))
        elif level == "ERROR":
            print_formatted_text(ANSI(f"{Fore.RED}[ERR] {data}{Style.RESET_ALL}"))

    async def start(self, config: Optional[ServerConfig] = None) -> bool:
        if config is not None:
            self.config = config
        try:
            await self.server.start(self.config)
        except PacServerError as e:
            print_formatted_text(ANSI(f"{Fore.RED}[!] Failed to start PAC server: {e}{Style.RESET_ALL}"))
            return False
        print_formatted_text(ANSI(f"{Fore.GREEN}[PAC] {self.server.pac_url}{Style.RESET_ALL}"))
        return True

    def print_status(self) -> None:
        cfg = self.server.config
        state = f"{Fore.GREEN}running" if self.server.is_running else f"{Fore.RED}stopped"
        print_formatted_text(ANSI(f"\n{Fore.YELLOW}--- {SERVER_NAME} ---{Style.RESET_ALL}"))
        print_formatted_text(ANSI(f"  State      : {state}{Style.RESET_ALL}"))
        print_formatted_text(f"  Listen     : {cfg.bind_address} port {self.server.port}")
        print_formatted_text(f"  Proxy port : {cfg.proxy_port} ({'SOCKS5' if cfg.use_socks else 'PROXY'})")
        print_formatted_text(f"  Secret     : {'on' if cfg.secure_local_pac else 'off'}")
        print_formatted_text(f"  PAC file   : {self.daemon.pac_path}")
        print_formatted_text(f"  User rules : {self.daemon.user_rule_path}")
        print_formatted_text("")

    def print_help(self) -> None:
        print_formatted_text(ANSI(f"\n{Fore.YELLOW}--- PAC Server Commands ---{Style.RESET_ALL}"))
        print_formatted_text(ANSI(f"  {Fore.CYAN}url{Style.RESET_ALL}              : Show the current PAC URL"))
        print_formatted_text(ANSI(f"  {Fore.CYAN}status{Style.RESET_ALL}           : Show listener and configuration"))
        print_formatted_text(ANSI(f"  {Fore.CYAN}secure on|off{Style.RESET_ALL}    : Toggle the secret token (restarts the listener)"))
        print_formatted_text(ANSI(f"  {Fore.CYAN}touch{Style.RESET_ALL}            : Create the PAC file from the default script"))
        print_formatted_text(ANSI(f"  {Fore.CYAN}rules{Style.RESET_ALL}            : Create the user-rule file and show its path"))
        print_formatted_text(ANSI(f"  {Fore.CYAN}check{Style.RESET_ALL}            : Fetch the PAC URL and report the result"))
        print_formatted_text(ANSI(f"  {Fore.CYAN}exit / quit / q{Style.RESET_ALL}  : Exit the application"))
        print_formatted_text("")

    async def check(self) -> None:
        url = self.server.pac_url
        try:
            response = await fetch_pac(url)
        except httpx.HTTPError as e:
            print_formatted_text(ANSI(f"{Fore.RED}[!] Check failed: {type(e).__name__} {e}{Style.RESET_ALL}"))
            return
        color = Fore.GREEN if response.status_code == 200 else Fore.RED
        print_formatted_text(ANSI(
            f"{color}[CHECK] {response.status_code} {response.headers.get('content-type', '')} "
            f"({len(response.content)} bytes){Style.RESET_ALL}"
        ))

    async def handle_command(self, line: str) -> bool:
        """Executes one shell command. Returns False when the shell should exit."""
        parts = line.strip().split()
        if not parts:
            return True
        cmd = parts[0].lower()

        if cmd == 'url':
            print_formatted_text(self.server.pac_url or "(not started)")

        elif cmd == 'status':
            self.print_status()

        elif cmd == 'secure':
            if len(parts) < 2 or parts[1].lower() not in ('on', 'off'):
                print_formatted_text("usage: secure on|off")
                return True
            # Config changes take effect through a stop/start cycle
            await self.start(self.config._replace(secure_local_pac=parts[1].lower() == 'on'))

        elif cmd == 'touch':
            path = self.daemon.touch_pac_file()
            print_formatted_text(ANSI(f"{Fore.BLUE}[SYS] PAC file: {path}{Style.RESET_ALL}"))

        elif cmd == 'rules':
            path = self.daemon.touch_user_rule_file()
            rules = self.daemon.get_user_rules()
            print_formatted_text(ANSI(f"{Fore.BLUE}[SYS] User rule file: {path} ({len(rules)} rules){Style.RESET_ALL}"))

        elif cmd == 'check':
            await self.check()

        elif cmd in ('help', '?'):
            self.print_help()

        elif cmd in ('q', 'exit', 'quit'):
            print_formatted_text("Shutting down...")
            return False

        else:
            print_formatted_text(f"Unknown command: {cmd} (try 'help')")
        return True

    async def _shell(self) -> None:
        session = PromptSession(completer=WordCompleter(COMMANDS, ignore_case=True))
        with patch_stdout():
            while True:
                try:
                    line = await session.prompt_async("pac > ")
                    if not await self.handle_command(line):
                        break
                except (KeyboardInterrupt, EOFError):
                    break
                except Exception: # pylint: disable=broad-exception-caught
                    traceback.print_exc()

    async def run(self) -> int:
        print_formatted_text(ANSI(f"{Fore.YELLOW}[*] Starting {SERVER_NAME}...{Style.RESET_ALL}"))
        if not await self.start():
            return 1

        self.daemon.add_listener(self.server.on_content_changed)
        watch_task = asyncio.create_task(self.daemon.watch(self.stop_event))
        try:
            if self.interactive:
                print_formatted_text(ANSI(f"{Fore.CYAN}Commands: url, status, secure on|off, touch, rules, check, exit{Style.RESET_ALL}"))
                await self._shell()
            else:
                await self.stop_event.wait()
        finally:
            self.stop_event.set()
            await watch_task
            self.daemon.remove_listener(self.server.on_content_changed)
            await self.server.stop()
        return 0

# -----------------------------------------------------------------------------
# 3. Entry Point
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%H:%M:%S"
    )
    colorama_init(autoreset=True)

    app = PacApp(
        config_from_args(args), args.pac_file,
        interactive=not args.no_shell, user_rule_file=args.user_rule_file
    )
    runner = uvloop.run if uvloop is not None else asyncio.run
    try:
        return runner(app.run())
    except KeyboardInterrupt:
        return 0

if __name__ == "__main__":
    sys.exit(main())
