import os

from hypothesis import HealthCheck, settings

# CI profile: broad exploration of token and history shapes
settings.register_profile(
    "ci",
    max_examples=200,
    deadline=200,
    suppress_health_check=[HealthCheck.too_slow],
    print_blob=True,
)

# Fast, reproducible profile for mutation testing runs
settings.register_profile(
    "mutation",
    max_examples=25,
    deadline=100,
    suppress_health_check=[HealthCheck.too_slow],
    derandomize=True,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
