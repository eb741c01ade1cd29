"""CLI helper that classifies a question with the complexity router."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from ..client import AIClient
from ..errors import ConfigurationError
from ..resolver import resolve_max_steps
from ..router.route import Classifier, route_question
from ..settings import LoopSettings, SettingsStore
from ..types import Message, RouterDecision
from ..utils.logging import setup_logging


def main(argv: Sequence[str] | None = None, *, classifier: Classifier | None = None) -> int:
    parser = argparse.ArgumentParser(description="Classify a question into a complexity tier, step budget and model.")
    parser.add_argument("question", nargs="?", help="Question to classify. Reads stdin when omitted.")
    parser.add_argument("--settings", type=Path, help="Path to a settings JSON file.")
    parser.add_argument("--router-model", help="Override the classifier model.")
    parser.add_argument(
        "--multiplier",
        type=float,
        default=1.0,
        help="Step multiplier to preview the effective step budget with.",
    )
    parser.add_argument("--json", action="store_true", help="Print the decision as JSON.")
    parser.add_argument("--verbose", action="store_true", help="Log router activity to stderr.")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING, log_to_file=False)

    question = (args.question or sys.stdin.read()).strip()
    if not question:
        print("No question provided.", file=sys.stderr)
        return 1

    try:
        settings = SettingsStore(args.settings).load(overrides={"router_model": args.router_model})
    except ConfigurationError as exc:
        print(f"{exc}: {'; '.join(exc.errors)}", file=sys.stderr)
        return 2

    decision = asyncio.run(_classify(question, settings, classifier))
    effective_steps = resolve_max_steps(decision.max_steps, args.multiplier)

    if args.json:
        payload = decision.to_dict()
        payload["effectiveMaxSteps"] = effective_steps
        print(json.dumps(payload, indent=2))
    else:
        print(f"complexity: {decision.complexity.value}")
        print(f"model: {decision.model}")
        print(f"max steps: {decision.max_steps} (effective {effective_steps})")
        print(f"reasoning: {decision.reasoning}")
    return 0


async def _classify(question: str, settings: LoopSettings, classifier: Classifier | None) -> RouterDecision:
    messages = [Message.user(question)]
    if classifier is not None:
        return await route_question(messages, classifier, request_id="cli", model=settings.router_model)
    client = AIClient(settings.client_settings())
    try:
        return await route_question(messages, client, request_id="cli", model=settings.router_model)
    finally:
        await client.aclose()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
