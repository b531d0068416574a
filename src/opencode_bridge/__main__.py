import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from opencode_bridge.app_config import load_json_config, parse_app_config, resolve_runtime_env
from opencode_bridge.backend import OpenCodeBackend
from opencode_bridge.bootstrap import AppRuntime, bootstrap_runtime, wait_for_server
from opencode_bridge.commands.router import CommandRouter
from opencode_bridge.errors import BackendError, ResponseTimeoutError
from opencode_bridge.message_buffer import format_agent_message
from opencode_bridge.messages import AgentMessage, ModelOutput, StatusMessage
from opencode_bridge.services.session_controller import SessionController

_LINE_PREFIX = "assistant> "
_USER_PROMPT = "you> "


class ConsolePrinter:
    """Backend listener that prints streamed text inline and other messages on their own line."""

    def __init__(self, line_prefix: str):
        self._line_prefix = line_prefix
        self._mid_line = False

    def __call__(self, message: AgentMessage) -> None:
        if isinstance(message, ModelOutput):
            if not self._mid_line:
                print(self._line_prefix, end="")
                self._mid_line = True
            print(message.text_delta, end="", flush=True)
            return

        # running/idle transitions are implied by the prompt loop
        if isinstance(message, StatusMessage) and message.status in ("running", "idle"):
            return

        formatted = format_agent_message(message)
        if formatted is None:
            return
        self.end_line()
        print(f"{self._line_prefix}{formatted[0]}", flush=True)

    def end_line(self) -> None:
        if self._mid_line:
            print()
            self._mid_line = False


def _print_server_not_running(server_url: str) -> None:
    print(f"\nOpenCode server is not running at {server_url}", file=sys.stderr)
    print("\nPlease start OpenCode in server mode first:", file=sys.stderr)
    print("  opencode serve --hostname 0.0.0.0 --port 4096", file=sys.stderr)
    print("\nOr set OPENCODE_SERVER_URL to point to your OpenCode server.", file=sys.stderr)


class Repl:
    def __init__(self, runtime: AppRuntime, session_id: str, printer: ConsolePrinter):
        self._runtime = runtime
        self._backend: OpenCodeBackend = runtime.backend
        self._session_id = session_id
        self._printer = printer
        self._session_controller = SessionController(line_prefix=_LINE_PREFIX)
        self._router = CommandRouter(
            on_help=self._on_help,
            on_session=self._on_session,
            on_sessions=self._on_sessions,
            on_history=self._on_history,
            on_abort=self._on_abort,
            on_permission=self._on_permission,
            on_unknown=self._on_unknown,
        )

    async def run(self) -> None:
        while True:
            try:
                user_input = await asyncio.to_thread(input, _USER_PROMPT)
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue
            if await self._router.try_handle(trimmed):
                continue

            try:
                print()
                await self._send(trimmed)
                print("\n")
            except BackendError as ex:
                self._printer.end_line()
                logger.error(f"Prompt failed: {ex}")

    async def _send(self, prompt: str) -> None:
        send_task = asyncio.create_task(self._backend.send(self._session_id, prompt))
        # let send() register its pending response before waiting on it
        await asyncio.sleep(0)
        try:
            await self._backend.wait_for_completion()
        except ResponseTimeoutError:
            self._printer.end_line()
            logger.error(f"No response within {self._backend.response_timeout_ms} ms; aborting")
            send_task.cancel()
            await self._backend.cancel(self._session_id)
        try:
            await send_task
        except asyncio.CancelledError:
            if not send_task.cancelled():
                raise
        finally:
            self._printer.end_line()

    async def _on_help(self) -> None:
        print(f"{_LINE_PREFIX}Commands:")
        print(f"{_LINE_PREFIX}  /session          show the active session id")
        print(f"{_LINE_PREFIX}  /sessions         list sessions on the server")
        print(f"{_LINE_PREFIX}  /history [n]      show the last n buffered messages")
        print(f"{_LINE_PREFIX}  /abort            ask the server to abort the current response")
        print(f"{_LINE_PREFIX}  /allow <id>       approve a permission request")
        print(f"{_LINE_PREFIX}  /deny <id>        deny a permission request")
        print(f"{_LINE_PREFIX}  exit | quit       leave")

    async def _on_session(self) -> None:
        print(f"{_LINE_PREFIX}Session: {self._session_id}")

    async def _on_sessions(self) -> None:
        try:
            sessions = await self._backend.client.list_sessions()
        except BackendError as ex:
            logger.error(f"Could not list sessions: {ex}")
            return
        if not sessions:
            print(f"{_LINE_PREFIX}No sessions on the server.")
            return
        for session in sessions:
            print(self._session_controller.format_session_list_entry(session, active_session_id=self._session_id))

    async def _on_history(self, argument: str) -> None:
        limit = int(argument) if argument.isdigit() else 20
        messages = self._runtime.message_buffer.get_messages()
        for line in self._session_controller.format_history_lines(messages, limit=limit):
            print(line)

    async def _on_abort(self) -> None:
        try:
            await self._backend.cancel(self._session_id)
        except BackendError as ex:
            logger.error(f"Abort failed: {ex}")
            return
        print(f"{_LINE_PREFIX}Abort requested.")

    async def _on_permission(self, request_id: str, approved: bool) -> None:
        await self._backend.respond_to_permission(request_id, approved)

    def _on_unknown(self, command: str) -> None:
        print(f"{_LINE_PREFIX}Unknown command: {command} (try /help)")


async def main() -> int:
    load_dotenv()

    env = resolve_runtime_env()
    app = parse_app_config(load_json_config(), env)
    runtime = bootstrap_runtime(app, env)
    backend = runtime.backend

    try:
        if not await wait_for_server(backend.client, app.server_wait_seconds):
            _print_server_not_running(runtime.server_url)
            return 1
        logger.debug(f"OpenCode server is running at {runtime.server_url}")

        printer = ConsolePrinter(_LINE_PREFIX)
        backend.add_listener(printer)
        try:
            result = await backend.start()
        except BackendError as ex:
            logger.error(f"Could not start OpenCode session: {ex}")
            return 1

        print("opencode-bridge (type 'exit' to quit, '/help' for commands)")
        print(f"Server: {runtime.server_url}")
        print(f"Session: {result.session_id}")
        print(f"Working directory: {app.working_directory}")
        if runtime.log_descriptions:
            print(f"Logging: {', '.join(runtime.log_descriptions)}")
        print()

        await Repl(runtime, result.session_id, printer).run()
    finally:
        await backend.dispose()
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
