from pydantic import BaseModel, field_validator


class Market(BaseModel):
    """A prediction market and the outcome tokens it trades.

    Binary markets carry two tokens ordered ``[YES, NO]``; multi-outcome
    markets carry one token per mutually exclusive outcome.
    """

    condition_id: str
    question: str = ""
    token_ids: list[str]
    outcomes: list[str] = []

    @field_validator("token_ids")
    @classmethod
    def _require_tokens(cls, value: list[str]) -> list[str]:
        cleaned = [str(t).strip() for t in value]
        if len(cleaned) < 2:
            raise ValueError("a market needs at least two outcome tokens")
        if any(not t for t in cleaned):
            raise ValueError("token ids must be non-empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("token ids must be unique within a market")
        return cleaned

    @property
    def yes_token_id(self) -> str:
        return self.token_ids[0]

    @property
    def no_token_id(self) -> str:
        return self.token_ids[1]

    @property
    def is_binary(self) -> bool:
        return len(self.token_ids) == 2

    @classmethod
    def binary(cls, condition_id: str, yes_token_id: str, no_token_id: str, question: str = "") -> "Market":
        """Build a YES/NO market"""
        return cls(
            condition_id=condition_id,
            question=question,
            token_ids=[yes_token_id, no_token_id],
            outcomes=["Yes", "No"],
        )
