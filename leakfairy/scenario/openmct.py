"""Navigation leak scenarios for Open MCT views.

Each scenario opens one pre-built display from the "Memory Leak Detection"
fixture folder, so the fixture export (``memory-leak-detection.json``) must
be imported first: pass it with ``--fixture`` or ``LEAKFAIRY_FIXTURE_PATH``.
A view that forgets to remove its listeners on navigation away keeps
detached DOM alive, which the analysis reports.
"""

from .registry import Scenario, register_scenario

FIXTURE_ROOT_NAME = "Memory Leak Detection"

IMAGERY = register_scenario(Scenario(
    name="imagery",
    object_name="example-imagery-memory-leak-test",
    description="Imagery view left open for the full time conductor window",
    fixture_root=FIXTURE_ROOT_NAME,
))
