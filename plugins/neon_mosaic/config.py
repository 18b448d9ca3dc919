"""
Render Configuration

Environment-tunable constants of the renderer, validated with pydantic.
Every field can be overridden with a NEON_MOSAIC_<FIELD> environment
variable (e.g. NEON_MOSAIC_ACTIVATION_THRESHOLD=5000).
"""

import os

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "NEON_MOSAIC_"


class RenderConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Population thresholds
    activation_threshold: int = Field(
        default=3500, ge=1,
        description="Population at which the energy outline activates (also the tile cap)",
    )
    headband_threshold: int = Field(
        default=1500, ge=0,
        description="Population that unlocks the headband region",
    )
    detail_full_population: int = Field(
        default=1000, ge=1,
        description="Population at which pupils and nostrils are fully opaque",
    )

    # Preview phase
    preview_limit: int = Field(default=1800, ge=0)
    preview_draw_max: int = Field(default=2000, ge=0)
    preview_min_batch: int = Field(default=120, ge=1)

    # Final phase
    crossfade_ms: float = Field(default=380.0, ge=0.0)
    outline_threshold: int = Field(default=12, ge=0, le=255)

    # Energy phase working resolution
    energy_max_dim: int = Field(default=520, ge=16, le=4096)
    noise_min_res: int = Field(default=220, ge=8)
    noise_max_res: int = Field(default=380, ge=8)

    # Data source + plan cache
    api_base: str = Field(default="http://127.0.0.1:8000")
    request_timeout: float = Field(default=20.0, gt=0)
    cache_path: str = Field(
        default=os.path.join("~", ".cache", "neon_mosaic", "plan.json"),
    )
    cache_ttl_seconds: float = Field(default=30 * 60, ge=0)
    cache_key: str = Field(default="neon-mosaic:lastPlan:v3")

    def headband_unlocked(self, population, plan=None):
        """Plan override if present, else the population rule."""
        if plan is not None and plan.unlock_headband is not None:
            return plan.unlock_headband
        return population >= self.headband_threshold

    def energy_unlocked(self, population):
        return population >= self.activation_threshold

    @classmethod
    def from_env(cls, environ=None, **overrides):
        """Defaults, then NEON_MOSAIC_* variables, then explicit overrides."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                values[name] = environ[key]
        values.update(overrides)
        return cls.model_validate(values)
