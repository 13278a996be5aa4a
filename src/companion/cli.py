"""CLI interface for the companion."""

import asyncio
import getpass
import os
from typing import Any

from .cache import CacheEvent, LocalCache
from .config import CompanionConfig
from .models import MOODS, Role
from .results import AuthFailure, NotFound, Unavailable
from .session import Session
from .stream import GIFT_MESSAGES, ExchangeHandle

BANNER = """
╔══════════════════════════════════════════╗
║            💞 Companion v0.1.0           ║
╚══════════════════════════════════════════╝

Commands:
  /new               - Start a new conversation
  /threads           - List conversations
  /switch <n>        - Open conversation n
  /delete <n>        - Delete conversation n
  /memories          - List what I remember
  /remember <text>   - Add a memory
  /edit <n> <text>   - Edit memory n
  /forget <n>        - Delete memory n
  /mood <tag>        - Set your mood ({moods})
  /gift <kind>       - Send a gift ({gifts})
  /score             - Show our score
  /sync              - Push pending changes now
  /logout            - Log out and clear local data
  /help              - Show this help
  /exit, /quit       - Exit

Type your message and press Enter.
"""


class CLI:
    """Interactive command-line interface."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._streaming_turn_id: str | None = None
        self._shown = ""
        self._unsubscribe = session.cache.subscribe(self._on_cache_event)

    @property
    def cache(self) -> LocalCache:
        return self.session.cache

    def _on_cache_event(self, event: CacheEvent) -> None:
        """Print fragments of the reply being waited on."""
        turn = event.turn
        if turn is None or turn.id != self._streaming_turn_id:
            return
        if event.kind in ("turn_updated", "turn_sealed"):
            # A fallback seal replaces the partial text instead of extending it
            if not turn.content.startswith(self._shown):
                print()
                self._shown = ""
            print(turn.content[len(self._shown) :], end="", flush=True)
            self._shown = turn.content

    async def _input(self, prompt: str) -> str:
        return await asyncio.to_thread(input, prompt)

    def _help(self) -> str:
        return BANNER.format(moods=", ".join(MOODS), gifts=", ".join(GIFT_MESSAGES))

    async def _authenticate(self) -> bool:
        """Log in or sign up. Returns False if the user gave up."""
        while self.session.user is None:
            choice = (await self._input("(l)ogin, (s)ignup or (q)uit? ")).strip().lower()
            if choice in ("q", "quit"):
                return False
            if choice not in ("l", "s", "login", "signup"):
                continue

            username = await self._input("username: ")
            secret = await asyncio.to_thread(getpass.getpass, "password: ")
            if choice.startswith("s"):
                result = await self.session.signup(username, secret)
            else:
                result = await self.session.login(username, secret)

            if isinstance(result, AuthFailure):
                print(f"❌ {result.reason}")
        return True

    async def _process_message(self, message: str) -> None:
        """Send a message and stream the reply to stdout."""
        handle = self.session.send(message)
        await self._await_reply(handle)

    async def _await_reply(self, handle: ExchangeHandle) -> None:
        self._streaming_turn_id = handle.turn.id
        self._shown = ""
        print("\n" + "─" * 40)
        try:
            await handle.wait()
        finally:
            self._streaming_turn_id = None
        print("\n" + "─" * 40)

    def _threads_listing(self) -> str:
        if not self.cache.threads:
            return "No conversations yet."
        lines = []
        for n, thread in enumerate(self.cache.threads, start=1):
            marker = "*" if thread.id == self.cache.active_thread_id else " "
            lines.append(f"{marker} {n}. {thread.title} ({len(thread.turns)} messages)")
        return "\n".join(lines)

    def _memories_listing(self) -> str:
        if not self.cache.facts:
            return "No memories yet."
        return "\n".join(
            f"  {n}. {fact.text}" for n, fact in enumerate(self.cache.facts_by_recency(), start=1)
        )

    def _pick(self, items: list[Any], arg: str) -> Any:
        try:
            index = int(arg) - 1
        except ValueError:
            return None
        if 0 <= index < len(items):
            return items[index]
        return None

    async def _handle_command(self, command: str) -> bool:
        """Handle a special command. Returns True if should continue, False to exit."""
        cmd, _, arg = command.strip().partition(" ")
        cmd = cmd.lower()
        arg = arg.strip()

        if cmd in ("/exit", "/quit", "exit", "quit"):
            print("\n👋 Goodbye!")
            return False

        if cmd == "/help":
            print(self._help())
        elif cmd == "/new":
            self.cache.new_thread()
            print("✓ New conversation")
        elif cmd == "/threads":
            print(self._threads_listing())
        elif cmd == "/switch":
            thread = self._pick(self.cache.threads, arg)
            if thread is None:
                print("Unknown conversation")
            else:
                self.cache.set_active(thread.id)
                for turn in thread.turns:
                    who = "you" if turn.role == Role.USER else "them"
                    print(f"{who}> {turn.content}")
        elif cmd == "/delete":
            thread = self._pick(self.cache.threads, arg)
            if thread is None:
                print("Unknown conversation")
            else:
                self.cache.delete_thread(thread.id)
                print(f"✓ Deleted '{thread.title}'")
        elif cmd == "/memories":
            print(self._memories_listing())
        elif cmd == "/remember":
            if not arg:
                print("Usage: /remember <text>")
            elif self.cache.add_fact(arg) is None:
                print("I already remember that")
            else:
                print("✓ Remembered")
        elif cmd == "/edit":
            number, _, text = arg.partition(" ")
            fact = self._pick(self.cache.facts_by_recency(), number)
            if fact is None or not text.strip():
                print("Usage: /edit <n> <text>")
            else:
                self.cache.edit_fact(fact.id, text)
                print("✓ Updated")
        elif cmd == "/forget":
            fact = self._pick(self.cache.facts_by_recency(), arg)
            if fact is None:
                print("Unknown memory")
            else:
                self.cache.delete_fact(fact.id)
                print("✓ Forgotten")
        elif cmd == "/mood":
            try:
                self.cache.set_mood(arg)
                print(f"✓ Mood: {arg}")
            except ValueError as e:
                print(f"❌ {e}")
        elif cmd == "/gift":
            try:
                handle = self.session.send_gift(arg)
            except ValueError as e:
                print(f"❌ {e}")
            else:
                await self._await_reply(handle)
        elif cmd == "/score":
            user = self.session.user
            days = user.days_together() if user else 0
            print(f"💞 Score: {self.cache.score} · {days} days together")
        elif cmd == "/sync":
            report = await self.session.sync.flush()
            if report is None:
                print("Nothing to sync")
            elif report.ok:
                print(f"✓ Synced {report.threads} conversation(s)")
            else:
                print("⚠ Sync incomplete, will retry on the next change")
        elif cmd == "/logout":
            self.session.logout()
            print("✓ Logged out")
            return await self._authenticate()

        return True

    async def run(self) -> None:
        """Run the interactive CLI."""
        result = await self.session.start()
        if isinstance(result, Unavailable):
            print("⚠ Offline, using local data")
        elif isinstance(result, NotFound):
            print("⚠ Account not found on the server, using local data")

        if not await self._authenticate():
            return

        print(self._help())
        print(f"Hi {self.session.user.username}! 💞\n")

        while True:
            try:
                user_input = (await self._input("you> ")).strip()

                if not user_input:
                    continue

                if user_input.startswith("/") or user_input.lower() in ("exit", "quit"):
                    if not await self._handle_command(user_input):
                        break
                    continue

                await self._process_message(user_input)

            except (KeyboardInterrupt, EOFError):
                print("\n👋 Goodbye!")
                break


async def run_cli() -> None:
    """Run the CLI with configuration from the environment."""
    if not os.getenv("GROQ_API_KEY"):
        print("❌ Error: GROQ_API_KEY environment variable not set")
        print("Please set it in your .env file or environment")
        return

    session = Session.from_config(CompanionConfig.from_env())
    cli = CLI(session)
    try:
        await cli.run()
    finally:
        await session.close()
