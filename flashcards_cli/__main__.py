"""CLI interface for the flashcard client.

Usage:
    python -m flashcards_cli login --provider google   Sign in through the browser
    python -m flashcards_cli logout                    Sign out
    python -m flashcards_cli status                    Show session and sync status
    python -m flashcards_cli list                      List flashcard sets, newest first
    python -m flashcards_cli add "topic" "front=back"  Create a set from front=back pairs
    python -m flashcards_cli generate "topic" --save   Generate a set on the server
    python -m flashcards_cli study SET_ID              Study a set in random order
    python -m flashcards_cli delete SET_ID             Delete a set
    python -m flashcards_cli sync                      Reconcile with the server
    python -m flashcards_cli dark-mode on|off          Toggle dark mode
    python -m flashcards_cli api-key KEY               Store a legacy Gemini API key
"""

import argparse
import asyncio
import logging
import webbrowser

from backend.database import ensure_db
from backend.errors import AuthCancelled, RateLimited
from client.app import FlashcardsClient, build_client
from client.models import FlashcardSet, OAuthPlatform, OAuthProvider, SignedOut


def open_client() -> FlashcardsClient:
    """Build a desktop client.

    The desktop has no deep-link handler, so the browser launcher asks the
    user to paste the callback URL the browser ended on and delivers it
    exactly as the OS would.
    """
    client: FlashcardsClient

    async def launch(auth_url: str) -> None:
        print(f"\n  Opening your browser to sign in. If it doesn't open, visit:\n  {auth_url}\n")
        webbrowser.open(auth_url)
        callback_url = await asyncio.to_thread(input, "  Paste the callback URL: ")
        if not client.handle_deep_link(callback_url.strip()):
            raise AuthCancelled("That doesn't look like a sign-in callback.")

    client = build_client(platform=OAuthPlatform.ANDROID, launch=launch)
    return client


def parse_card(text: str) -> tuple[str, str]:
    front, sep, back = text.partition("=")
    if not sep or not front.strip() or not back.strip():
        raise argparse.ArgumentTypeError(f"expected FRONT=BACK, got {text!r}")
    return front.strip(), back.strip()


async def cmd_login(client: FlashcardsClient, args: argparse.Namespace) -> None:
    provider = OAuthProvider(args.provider.upper())
    result = await client.auth.sign_in(provider)
    if result.ok:
        print(f"  Signed in with {provider.display_name}.")
    else:
        print(f"  {result.error or 'Sign-in failed.'}")


async def cmd_logout(client: FlashcardsClient, args: argparse.Namespace) -> None:
    await client.auth.sign_out()
    print("  Signed out.")


async def cmd_status(client: FlashcardsClient, args: argparse.Namespace) -> None:
    # Ask the server who we are; a revoked token signs us out here
    user = await client.auth.current_user()
    state = client.auth.state
    if isinstance(state, SignedOut):
        print("  Not signed in" + (" (session expired)" if state.expired else ""))
    elif user is not None:
        print(f"  Signed in with {state.provider.display_name} as {user.auth_id}")
    else:
        print(f"  Signed in with {state.provider.display_name} (server unreachable)")
    if not await client.auth.is_signed_in() and await client.auth.has_app_access():
        print("  Using a legacy API key")

    sets = await client.repository.get_all_flashcard_sets()
    local_only = sum(1 for meta in sets if meta.is_local_only)
    print(f"  {len(sets)} flashcard sets, {local_only} not yet synced")
    print(f"  Dark mode: {'on' if await client.context.store.is_dark_mode() else 'off'}")


async def cmd_list(client: FlashcardsClient, args: argparse.Namespace) -> None:
    sets = await client.repository.get_all_flashcard_sets()
    if not sets:
        print("  No flashcard sets yet.")
        return
    for meta in sets:
        s = meta.flashcard_set
        marker = " (local only)" if meta.is_local_only else ""
        print(f"  {s.id}  {s.topic}  [{s.card_count} cards]{marker}")


async def cmd_add(client: FlashcardsClient, args: argparse.Namespace) -> None:
    meta = await client.repository.save_flashcard_set(FlashcardSet.create(args.topic, args.cards))
    status = "saved on this device only" if meta.is_local_only else "saved and synced"
    print(f"  {meta.flashcard_set.id}: {status}")


async def cmd_generate(client: FlashcardsClient, args: argparse.Namespace) -> None:
    try:
        flashcard_set = await client.repository.generate(args.topic, args.count, args.query)
    except RateLimited as e:
        print(f"  {e} ({e.number_of_generations} generations used)")
        return
    if flashcard_set is None:
        print("  Generation failed. Sign in and try again.")
        return
    for card in flashcard_set.flashcards:
        print(f"  {card.front}  =>  {card.back}")
    if args.save:
        await client.repository.save_flashcard_set(flashcard_set)
        print(f"  Saved as {flashcard_set.id}")


async def cmd_study(client: FlashcardsClient, args: argparse.Namespace) -> None:
    cards = await client.repository.get_randomized_flashcards(args.set_id)
    if cards is None:
        print(f"  No flashcard set {args.set_id}")
        return
    for i, card in enumerate(cards, 1):
        print(f"\n  [{i}/{len(cards)}] {card.front}")
        if not args.reveal:
            await asyncio.to_thread(input, "  (enter to flip) ")
        print(f"  {card.back}")


async def cmd_delete(client: FlashcardsClient, args: argparse.Namespace) -> None:
    await client.repository.delete_flashcard_set(args.set_id)
    print(f"  Deleted {args.set_id}")


async def cmd_sync(client: FlashcardsClient, args: argparse.Namespace) -> None:
    report = await client.repository.reconcile()
    if report.skipped:
        print(f"  Not signed in; {len(report.local_only)} sets are on this device only.")
        return
    if report.message:
        print(f"  {report.message}")
    print(f"  {len(report.pulled)} downloaded, {len(report.pushed)} uploaded, {len(report.local_only)} not synced")


async def cmd_dark_mode(client: FlashcardsClient, args: argparse.Namespace) -> None:
    await client.context.store.set_dark_mode(args.mode == "on")
    print(f"  Dark mode {args.mode}")


async def cmd_api_key(client: FlashcardsClient, args: argparse.Namespace) -> None:
    await client.context.store.set_gemini_api_key(args.key.strip())
    print("  API key saved.")


async def run(args: argparse.Namespace) -> None:
    await ensure_db()
    async with open_client() as client:
        await COMMANDS[args.command](client, args)


COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "status": cmd_status,
    "list": cmd_list,
    "add": cmd_add,
    "generate": cmd_generate,
    "study": cmd_study,
    "delete": cmd_delete,
    "sync": cmd_sync,
    "dark-mode": cmd_dark_mode,
    "api-key": cmd_api_key,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flashcards_cli", description="Flashcard study client")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    login_parser = subparsers.add_parser("login", help="Sign in through the browser")
    login_parser.add_argument("-p", "--provider", choices=["google", "apple"], default="google")

    subparsers.add_parser("logout", help="Sign out")
    subparsers.add_parser("status", help="Show session and sync status")
    subparsers.add_parser("list", help="List flashcard sets")

    add_parser = subparsers.add_parser("add", help="Create a flashcard set")
    add_parser.add_argument("topic")
    add_parser.add_argument("cards", nargs="+", type=parse_card, help="Cards as FRONT=BACK")

    generate_parser = subparsers.add_parser("generate", help="Generate a set on the server")
    generate_parser.add_argument("topic")
    generate_parser.add_argument("-n", "--count", type=int, default=10)
    generate_parser.add_argument("-q", "--query", default="", help="Extra guidance for generation")
    generate_parser.add_argument("--save", action="store_true", help="Keep the generated set")

    study_parser = subparsers.add_parser("study", help="Study a set in random order")
    study_parser.add_argument("set_id")
    study_parser.add_argument("--reveal", action="store_true", help="Show answers without pausing")

    delete_parser = subparsers.add_parser("delete", help="Delete a set")
    delete_parser.add_argument("set_id")

    subparsers.add_parser("sync", help="Reconcile with the server")

    dark_parser = subparsers.add_parser("dark-mode", help="Toggle dark mode")
    dark_parser.add_argument("mode", choices=["on", "off"])

    key_parser = subparsers.add_parser("api-key", help="Store a legacy Gemini API key")
    key_parser.add_argument("key")

    return parser


def main() -> None:
    """Entry point for the flashcards CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        return

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
