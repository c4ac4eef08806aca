"""
Metered OpenAI client wrapper.

Charges credits through the consumption gate before any paid API call.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from openai import OpenAI

from ..core.errors import InsufficientCredits
from ..core.gate import ConsumptionGate

JSON_ONLY_INSTRUCTION = "\nRespond with JSON only."

_FENCE_PATTERN = re.compile(r"```(?:json)?")


@dataclass(frozen=True)
class GenerationResult:
    """Generated content plus the credit state after the charge."""
    result: Any
    new_balance: int
    recharged: bool
    request_id: Optional[str] = None


def parse_json_reply(text: str) -> Any:
    """Parse a model reply that should be JSON.

    Markdown code fences are stripped first. Replies that still don't parse
    are returned as the raw text.
    """
    cleaned = _FENCE_PATTERN.sub("", text).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return text


class MeteredOpenAI:
    """OpenAI client wrapper that only calls the API once credits are charged.

    The charge is a reservation: it is taken before the call and kept if the
    call fails or returns nothing usable.
    """

    def __init__(
        self,
        gate: ConsumptionGate,
        model: str,
        capability: str = "generation",
        cost: Optional[int] = None
    ):
        """Initialize metered OpenAI client.

        Args:
            gate: Consumption gate that authorizes and charges each call
            model: OpenAI model name (required)
            capability: Capability name recorded on usage transactions
            cost: Credits per call; defaults to the configured cost for capability

        Raises:
            ValueError: If model or capability is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not capability or not capability.strip():
            raise ValueError("capability is required and cannot be empty")

        self.gate = gate
        self.model = model
        self.capability = capability
        self.cost = cost if cost is not None else gate.engine.config.costs.cost_for(capability)
        self.client = OpenAI()

    def generate(
        self,
        account_id: str,
        prompt: str,
        as_json: bool = False,
        **kwargs: Any
    ) -> GenerationResult:
        """Charge the account, then run one chat completion.

        Args:
            account_id: Already-authenticated account id
            prompt: User prompt (required)
            as_json: Ask for a JSON reply and parse it
            **kwargs: Additional OpenAI parameters

        Returns:
            GenerationResult with the text (or parsed JSON) and new balance

        Raises:
            ValueError: If prompt is empty or the reply carries no text
            InsufficientCredits: If the account cannot afford the call;
                the API is not called
            OpenAI API errors: Propagated without modification
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required and cannot be empty")

        authorization = self.gate.authorize_consumption(
            account_id, self.cost, capability=self.capability
        )
        if not authorization.authorized:
            raise InsufficientCredits(account_id, self.cost, authorization.new_balance)

        content = prompt + JSON_ONLY_INSTRUCTION if as_json else prompt
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": content}],
            **kwargs
        )

        text = None
        if response.choices:
            text = response.choices[0].message.content
        if not text:
            raise ValueError("Model response contained no text")

        return GenerationResult(
            result=parse_json_reply(text) if as_json else text,
            new_balance=authorization.new_balance,
            recharged=authorization.recharged,
            request_id=response.id
        )
