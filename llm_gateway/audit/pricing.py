from dataclasses import dataclass


@dataclass(frozen=True)
class ModelPrice:
    """USD per 1K tokens."""

    input_per_1k: float
    output_per_1k: float


DEFAULT_PRICE = ModelPrice(input_per_1k=0.001, output_per_1k=0.002)

PRICES: dict[str, ModelPrice] = {
    "gpt-4o": ModelPrice(0.0025, 0.01),
    "gpt-4o-mini": ModelPrice(0.00015, 0.0006),
    "gpt-4-turbo": ModelPrice(0.01, 0.03),
    "claude-3-5-sonnet-20240620": ModelPrice(0.003, 0.015),
    "claude-3-5-haiku": ModelPrice(0.00025, 0.00125),
    "claude-3-5-haiku-20241022": ModelPrice(0.00025, 0.00125),
}


def price_for(model: str) -> ModelPrice:
    return PRICES.get(model, DEFAULT_PRICE)


def calculate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    price = price_for(model)
    cost = tokens_in / 1000 * price.input_per_1k + tokens_out / 1000 * price.output_per_1k
    return round(cost, 8)
