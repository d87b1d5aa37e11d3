"""
Example 01: Basic Ledger
========================

Demonstrates the command-handler flow around a HistoryManager:
- Charging credits before a paid action with check_and_charge()
- Storing the exchange in a named context
- Refunding the exact receipt when the action fails
- Printing a credit report for a membership tier

Run:
    uv run python examples/01_basic_ledger.py
"""

import asyncio
import sys
import tempfile
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def fake_completion(prompt: str) -> str:
    if "fail" in prompt:
        raise RuntimeError("upstream model timed out")
    return f"You said: {prompt}"


async def handle_chat(manager, user_id: str, chat_id: str, prompt: str) -> None:
    from chatledger import build_system_prompt

    charge = await manager.check_and_charge(user_id, 1, "text")
    if not charge:
        print(f"  declined ({charge.reason}), balance {charge.balance}")
        return

    try:
        await manager.add_message(chat_id, "default", "user", prompt)
        system = build_system_prompt(
            await manager.get_system_prompt(chat_id, "default"),
            display_name=user_id,
        )
        reply = await fake_completion(prompt)
        await manager.add_message(chat_id, "default", "assistant", reply)
        print(f"  system prompt: {len(system)} chars, reply: {reply!r}, balance {charge.balance}")
    except RuntimeError as exc:
        refunded = await manager.refund(user_id, charge.receipt, "text")
        print(f"  failed ({exc}); refunded={refunded}, balance {await manager.get_balance(user_id)}")


async def main() -> None:
    from chatledger import HistoryManager, LedgerConfig, StoreConfig

    print("=== chatledger Basic Ledger Example ===\n")

    with tempfile.TemporaryDirectory() as data_dir:
        manager = HistoryManager(LedgerConfig(store=StoreConfig(data_dir=data_dir)))
        await manager.set_personality("chat-1", "default", "You are a cheerful pirate.")

        prompts = ["hello", "tell me a joke", "please fail", "one more", "and another", "last one", "over budget"]
        for prompt in prompts:
            print(f"> {prompt}")
            await handle_chat(manager, "user-1", "chat-1", prompt)

        history = await manager.get_history("chat-1", "default")
        print(f"\nMessages in history: {len(history)}")

        report = await manager.credit_report("user-1", "Standard")
        print(
            f"Balance {report.balance}/{report.daily_limit}, "
            f"used {report.total_credits_used}, resets in {report.resets_in}"
        )


if __name__ == "__main__":
    asyncio.run(main())
