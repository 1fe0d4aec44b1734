"""Pricing table: credits charged per job kind and credits granted per plan."""

from vidgenie.core.config import Settings
from vidgenie.models.generation_job import JobKind
from vidgenie.services.exceptions import ValidationError


class PricingTable:
    """Cost lookup keyed by job kind, built from settings."""

    def __init__(self, settings: Settings):
        self._costs: dict[JobKind, int] = {
            JobKind.IMAGE: settings.image_job_cost,
            JobKind.IMAGE_THEN_VIDEO: settings.image_then_video_job_cost,
        }
        self._plan_credits = {k.lower(): v for k, v in settings.plan_credits.items()}

    def cost_for(self, kind: JobKind) -> int:
        try:
            return self._costs[kind]
        except KeyError:
            raise ValidationError(f"No price configured for job kind {kind!r}")

    def all_costs(self) -> dict[str, int]:
        return {kind.value: cost for kind, cost in self._costs.items()}

    def plan_credits(self, plan_id: str) -> int | None:
        """Monthly credit allowance for a plan, or None for an unknown plan."""
        return self._plan_credits.get(plan_id.lower())

    @property
    def plans(self) -> list[str]:
        return list(self._plan_credits)
