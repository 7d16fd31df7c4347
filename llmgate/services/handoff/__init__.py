from .builder import (
    HandoffBuilder,
    HandoffBuilderSealedError,
    create_handoff_builder,
    render_handoff,
    truncate_text,
)

__all__ = [
    "HandoffBuilder",
    "HandoffBuilderSealedError",
    "create_handoff_builder",
    "render_handoff",
    "truncate_text",
]
