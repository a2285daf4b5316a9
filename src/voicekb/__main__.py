"""Console chat over the same conversation service the server uses."""

import argparse
import asyncio
import getpass
import uuid

from .app import build_service, stop_service
from .pipeline.config import load_settings


class ConsoleTransport:
    async def send_text(self, text: str) -> None:
        print(f"bot> {text}")

    async def send_voice(self, audio: bytes) -> None:
        print(f"bot> [voice reply, {len(audio)} bytes]")


async def chat(args: argparse.Namespace) -> None:
    config = load_settings(args.config)
    if args.data:
        config.setdefault("store", {})["path"] = args.data
    if args.no_voice:
        config.setdefault("tts", {})["enabled"] = False
    config.setdefault("asr", {})["enabled"] = False

    service = build_service(config)
    transport = ConsoleTransport()
    user_id = getpass.getuser()

    print("Chat ready. Commands start with '/', try /help. Type 'exit' to quit.")
    try:
        while True:
            user_input = (await asyncio.to_thread(input, "you> ")).strip()
            if user_input.lower() in {"exit", "quit"}:
                break
            if not user_input:
                continue
            await service.handle_text(uuid.uuid4().hex, user_id, user_input, transport)
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await stop_service(service)


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the knowledge base from the terminal.")
    parser.add_argument("--config", default=None, help="Path to config file (default: $VOICEKB_CONFIG or config/pipeline.json).")
    parser.add_argument("--data", default=None, help="Path to knowledge JSONL file.")
    parser.add_argument("--no-voice", action="store_true", help="Skip synthesized voice replies.")
    args = parser.parse_args()
    asyncio.run(chat(args))


if __name__ == "__main__":
    main()
